#!/usr/bin/env python3
"""
Example script to snapshot a VM. The task reference is printed and then
waited on separately.

Usage: python vm_snapshot.py <vm_uuid> <snapshot_name>
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'scripts'))

from client import load_session
from resources import VM
from tasks import start_from_reference, wait

def main():
    if len(sys.argv) != 3:
        print("Usage: python vm_snapshot.py <vm_uuid> <snapshot_name>")
        sys.exit(1)

    uuid = sys.argv[1]
    name = sys.argv[2]

    try:
        with load_session() as xo:
            print(f"Creating snapshot '{name}' for VM {uuid}...")
            href = VM(xo).snapshot(uuid, name=name)
            print(f"Task initiated: {href}")

            task = start_from_reference(xo, href)
            final = wait(xo, [task])[0]
            print(f"Snapshot task finished with status '{final.status.value}' at {final.ended_at}")

    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
