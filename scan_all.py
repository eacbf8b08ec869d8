import argparse
import asyncio

from ble_utils import describe_device, list_nearby


async def scan_all(timeout=10.0, adapter=None):
    print(f"Scanning for ALL BLE devices ({timeout:g} seconds)...")
    found = await list_nearby(timeout, adapter)

    print(f"\nFound {len(found)} devices:\n")
    for device, adv_data in found:
        print(describe_device(device, adv_data))
    print("-" * 50)
    print("Pass the address of your heart rate sensor to main.py")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="List nearby BLE peripherals")
    parser.add_argument("--timeout", type=float, default=10.0)
    parser.add_argument("--adapter")
    args = parser.parse_args()
    asyncio.run(scan_all(args.timeout, args.adapter))
