"""
Camstream CLI - Main entry point.

Provides command-line interface for sending MQTT commands to the camera
stream service and for watching the messages it publishes.
"""

import argparse
import json
import sys
import time
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional

from .mqtt_client import MQTTCommandClient

# Subcommands that map 1:1 to a command without arguments
SIMPLE_COMMANDS = [
    'enable-detection',
    'disable-detection',
    'enable-remote',
    'disable-remote',
    'resume-remote',
    'quality',
    'status',
    'help',
]


def load_yaml_config(config_path: str) -> Dict[str, Any]:
    """
    Load YAML configuration file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If YAML is invalid or not a mapping
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")

    if not isinstance(config, dict):
        raise ValueError(f"Expected a mapping in {config_path}")
    return config


def command_topic(service_id: str) -> str:
    return f"camstream/control/{service_id}/commands"


def data_topic(service_id: str) -> str:
    return f"camstream/data/{service_id}"


def status_topic(service_id: str) -> str:
    return f"camstream/control/{service_id}/status"


def send_command(
    command: Dict[str, Any],
    service_id: str = "cam_01",
    broker: str = "localhost",
    port: int = 1883,
    wait: float = 0.0
) -> Optional[Dict[str, Any]]:
    """
    Send command to the camera stream service via MQTT.

    With ``wait`` > 0, block up to that many seconds for the status the
    service publishes in response and return it (None on silence).
    """
    client = MQTTCommandClient(broker=broker, port=port)
    if wait <= 0:
        client.send_command(command_topic(service_id), command, qos=1)
        return None

    reply = client.request(command_topic(service_id), status_topic(service_id), command, timeout=wait)
    if reply is None:
        print(f"⏳ No status from {service_id} within {wait}s")
    else:
        print(json.dumps(reply, indent=2, default=str))
    return reply


def build_command(args: argparse.Namespace) -> Dict[str, Any]:
    """
    Translate parsed CLI arguments into a command payload.

    Raises:
        ValueError: If the subcommand is unknown or its arguments are invalid
    """
    if args.command in SIMPLE_COMMANDS:
        return {'command': args.command.replace('-', '_')}

    if args.command == 'set-model':
        if args.model.endswith(('.yaml', '.yml')):
            command = load_yaml_config(args.model)
            command.setdefault('command', 'set_model')
            if 'model_identifier' not in command:
                raise ValueError(f"{args.model} has no model_identifier")
        else:
            command = {'command': 'set_model', 'model_identifier': args.model}

        if args.primary_prompt is not None:
            command['primary_prompt'] = args.primary_prompt
        if args.negative_prompt is not None:
            command['negative_prompt'] = args.negative_prompt
        if args.task is not None:
            command['task'] = args.task
        return command

    if args.command == 'set-filter':
        command = {'command': 'set_filter', 'class_filter': args.class_filter}
        if args.score_threshold is not None:
            command['score_threshold'] = args.score_threshold
        return command

    raise ValueError(f"Unknown command: {args.command}")


def format_event(kind: str, message: Any) -> str:
    """One output line per received message."""
    return f"[{kind}] {json.dumps(message.to_dict(), default=str)}"


def watch(service_id: str, broker: str, port: int) -> None:
    """Print every message the service publishes until interrupted."""
    from camstream_mqtt import MessageSubscriber, create_logger

    subscriber = MessageSubscriber(
        broker_host=broker,
        broker_port=port,
        base_topic=data_topic(service_id),
        logger=create_logger("camstream_cli.watch"),
        on_detection=lambda msg: print(format_event('detections', msg), flush=True),
        on_classification=lambda msg: print(format_event('classifications', msg), flush=True),
        on_event=lambda kind, msg: print(format_event(kind, msg), flush=True),
        client_id=f"camstream_cli_watch_{service_id}",
    )

    if not subscriber.connect():
        raise ConnectionError(f"Unable to connect to MQTT broker at {broker}:{port}")

    subscriber.start()
    print(f"👀 Watching {data_topic(service_id)}/# (Ctrl+C to stop)")
    try:
        while subscriber.is_running():
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        subscriber.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Camstream CLI - Send MQTT commands to the camera stream service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start / stop local inference
  camstream-cli enable-detection
  camstream-cli disable-detection

  # Change model (respawns the worker)
  camstream-cli set-model yolo11s.pt
  camstream-cli set-model yolov8s-world.pt --task classify --primary-prompt "a person"
  camstream-cli set-model config/commands/set_model.yaml

  # Change class filter / score threshold
  camstream-cli set-filter "0, 2" --score-threshold 0.4

  # Remote analysis
  camstream-cli enable-remote
  camstream-cli resume-remote

  # Simple commands (no arguments)
  camstream-cli quality
  camstream-cli status
  camstream-cli --wait 5 status

  # Print published messages
  camstream-cli watch
"""
    )

    # Global arguments
    parser.add_argument(
        "--service-id",
        default="cam_01",
        help="Target service ID (default: cam_01)"
    )
    parser.add_argument(
        "--broker",
        default="localhost",
        help="MQTT broker host (default: localhost)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=1883,
        help="MQTT broker port (default: 1883)"
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=0.0,
        metavar="SECONDS",
        help="Wait for and print the service status reply (default: do not wait)"
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # set-model command
    set_model = subparsers.add_parser('set-model', help='Change model (identifier or YAML config)')
    set_model.add_argument('model', help='Model identifier or path to set_model YAML')
    set_model.add_argument('--primary-prompt', help='Text prompt scored in classify mode')
    set_model.add_argument('--negative-prompt', help='Contrastive text prompt')
    set_model.add_argument('--task', choices=['detect', 'classify'], help='Worker task')

    # set-filter command
    set_filter = subparsers.add_parser('set-filter', help='Change class filter / score threshold')
    set_filter.add_argument('class_filter', help='Comma-separated class ids ("" allows all)')
    set_filter.add_argument('--score-threshold', type=float, help='Minimum detection confidence')

    # Simple commands (no arguments)
    subparsers.add_parser('enable-detection', help='Start local inference')
    subparsers.add_parser('disable-detection', help='Stop local inference')
    subparsers.add_parser('enable-remote', help='Start the remote session')
    subparsers.add_parser('disable-remote', help='Stop the remote session')
    subparsers.add_parser('resume-remote', help='Retry an errored remote session now')
    subparsers.add_parser('quality', help='Publish blur/lighting of the current frame')
    subparsers.add_parser('status', help='Query service status')
    subparsers.add_parser('help', help='List the commands the service accepts')

    subparsers.add_parser('watch', help='Print messages published by the service')

    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == 'watch':
            watch(args.service_id, args.broker, args.port)
        else:
            send_command(build_command(args), args.service_id, args.broker, args.port, args.wait)

    except Exception as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
