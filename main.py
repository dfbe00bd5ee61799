#!/usr/bin/env python3
"""
gifconform - Main Entry Point
Fit animated GIF/WebP/AVIF images to a file size and canvas budget

Runs the same command line as the installed ``gifconform`` script, e.g.:
    python main.py convert sticker.gif out.gif
"""

import sys
import os

# Force UTF-8 encoding for console output
if sys.platform.startswith('win'):
    # Set console code page to UTF-8 on Windows
    os.system('chcp 65001 > nul')
    # Reconfigure stdout to use UTF-8
    if hasattr(sys.stdout, 'reconfigure'):
        try:
            sys.stdout.reconfigure(encoding='utf-8')
        except Exception:
            pass
    if hasattr(sys.stderr, 'reconfigure'):
        try:
            sys.stderr.reconfigure(encoding='utf-8')
        except Exception:
            pass

from gifconform.cli import main

if __name__ == '__main__':
    main()
