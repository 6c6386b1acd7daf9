#!/usr/bin/env python3
"""

Usage:
    python Main.py [--server 127.0.0.1] [--port 5810] [--subscribe /SmartDashboard --prefix]

Or
    python -m nt4_client [--server 127.0.0.1] [--port 5810] [--subscribe /SmartDashboard --prefix]
"""

from nt4_client.__main__ import main

if __name__ == "__main__":
    main()
