#!/usr/bin/env python3
"""
Example script to list VMs known to Xen Orchestra.

Usage: python list_vms.py [tag ...]
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'scripts'))

from client import load_session
from resources import VM

def main():
    tags = sys.argv[1:] or None

    try:
        with load_session() as xo:
            vms = VM(xo).list(tags=tags, limit=0)

        print("VMs:")
        print("-" * 50)
        for vm in vms:
            print(f"UUID: {vm['uuid']}, Name: {vm.get('name_label', 'N/A')}, Power: {vm.get('power_state')}, Tags: {', '.join(vm.get('tags', []))}")

    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
