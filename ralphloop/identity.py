__codename__ = "RALPH"
__version__ = "0.4.0"
__tagline__ = "Tests decide. Not checkboxes."

BANNER = r"""
  ___  ___  _    ___ _  _
 | _ \/ _ \| |  | _ \ || |
 |   / (_) | |__|  _/ __ |
 |_|_\\__,_|____|_| |_||_|
"""
