#!/usr/bin/env python3
"""
Launcher for the recorder worker.

- Same positional arguments as `gst-record-worker`
- JSON events on stdout, diagnostics on stderr
- "stop" on stdin (or Ctrl-C / SIGTERM) ends the recording cleanly

Usage:
  ./main.py auto "" /tmp/out.ogg none none 100 1 1
  ./main.py --list-sources
"""

import sys

from gst_recorder import record_worker


if __name__ == "__main__":
    sys.exit(record_worker.main())
