#!/usr/bin/env python3
"""
Development launcher for camrelay.

- Loads configuration (CAMRELAY_CONFIG or config.yaml next to this file)
- Runs the command server in the foreground
- Ctrl-C exits cleanly; the ffmpeg relay is stopped on shutdown
"""

import sys

from camrelay.web_api import cli_main


def main():
    print("[dev] Running camrelay command server (Ctrl-C to exit)")
    return cli_main(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
