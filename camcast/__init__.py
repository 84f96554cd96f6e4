"""
camcast - Webcam MJPEG Streaming Server

This module captures YUYV frames from a V4L2 webcam, encodes them as JPEG
and broadcasts each frame to every connected HTTP viewer, dropping frames
rather than queueing them when any stage falls behind.
"""

__version__ = "0.1.0"
