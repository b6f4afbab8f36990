"""
Root entry point – delegates to the go_overlay package.

Usage:
    python go_overlay.py grid     --corners "102,88;918,95;930,905;95,899"
    python go_overlay.py decode   --moves pddpqqdd
    python go_overlay.py overlay  --empty empty.png --image frame.png --corners corners.json --moves pddp
"""

from go_overlay.main import main

if __name__ == "__main__":
    main()
