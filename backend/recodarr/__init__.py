"""
Recodarr: encoding job queue and ffmpeg driver.
"""

__version__ = "0.1.0"
