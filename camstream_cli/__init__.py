"""
Camstream CLI - Command-line interface for camera stream control.

This package provides a CLI for sending MQTT commands to a running camera
stream service without manually writing JSON, and for watching the messages
it publishes.

Usage:
    camstream-cli enable-detection
    camstream-cli set-model yolov8s-world.pt --primary-prompt "person"
    camstream-cli set-filter "0, 2" --score-threshold 0.4
    camstream-cli status
    camstream-cli watch
"""

__version__ = "1.0.0"
