#!/usr/bin/env python3
"""
Example script to start a VM and wait for the task to finish.

Usage: python vm_start.py <vm_uuid>
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'scripts'))

from client import load_session
from resources import VM
from tasks import TaskStatus

def main():
    if len(sys.argv) != 2:
        print("Usage: python vm_start.py <vm_uuid>")
        sys.exit(1)

    uuid = sys.argv[1]

    try:
        with load_session() as xo:
            print(f"Starting VM {uuid}...")
            task = VM(xo).start(uuid, wait=True)

        if task.status == TaskStatus.SUCCESS:
            print("VM started successfully.")
        else:
            print(f"VM start failed: {task.result_message}")
            sys.exit(1)

    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
