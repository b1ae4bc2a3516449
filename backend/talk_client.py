#!/usr/bin/env python3
"""
Talk Mode Test Client
Plays both sides against a running server: the Pi (uploads an image pair)
and the phone app (asks a question and waits for the spoken reply).
"""

import argparse
import sys
import threading
import time
from pathlib import Path

import requests
import socketio
from colorama import Fore, Style, init

# Initialize colorama for cross-platform colored output
init(autoreset=True)

# Create Socket.IO client
sio = socketio.Client()

ready_received = threading.Event()
reply_received = threading.Event()
last_reply = {}


def print_header(text):
    """Print a styled header."""
    print(f"\n{Fore.CYAN}{'=' * 70}")
    print(f"{Fore.CYAN}{text.center(70)}")
    print(f"{Fore.CYAN}{'=' * 70}{Style.RESET_ALL}\n")


def print_success(text):
    print(f"{Fore.GREEN}✓ {text}{Style.RESET_ALL}")


def print_error(text):
    print(f"{Fore.RED}✗ {text}{Style.RESET_ALL}")


def print_warning(text):
    print(f"{Fore.YELLOW}⚠  {text}{Style.RESET_ALL}")


@sio.event
def connect():
    print_success("Connected to BlindAid backend")


@sio.event
def disconnect():
    print_warning("Disconnected from server")


@sio.on('talk:ready')
def on_ready(data):
    print_success(f"Images ready: {data}")
    ready_received.set()


@sio.on('talk:capture')
def on_capture(data):
    print_warning(f"Server asked the device to capture: {data}")


@sio.on('talk:reply')
def on_reply(data):
    last_reply.update(data or {})
    reply_received.set()


@sio.event
def error(data):
    """Handle error events from server."""
    print_error(f"Server error: {data}")


def upload_pair(server: str, device_id: str, previous: Path, current: Path, timeout: int) -> bool:
    """POST the pair the same way the Pi does (multipart last/live fields)."""
    with open(previous, 'rb') as prev_f, open(current, 'rb') as curr_f:
        files = {
            'last': (previous.name, prev_f, 'image/jpeg'),
            'live': (current.name, curr_f, 'image/jpeg'),
        }
        response = requests.post(
            f"{server}/talk/images", files=files, data={'device_id': device_id}, timeout=timeout
        )
    if response.status_code != 200:
        print_error(f"Upload rejected ({response.status_code}): {response.text}")
        return False
    print_success(f"Uploaded {previous.name} + {current.name}")
    return True


def main():
    parser = argparse.ArgumentParser(
        description='Test client for BlindAid talk mode',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python talk_client.py "what is in front of me" --previous a.jpg --current b.jpg
  python talk_client.py "who is the prime minister of India"
  python talk_client.py "is the path clear" --device pi-kitchen --server http://192.168.1.20:3000
        """
    )
    parser.add_argument('question', type=str, help='What the user says')
    parser.add_argument('--previous', type=str, help='Previous view image (JPG)')
    parser.add_argument('--current', type=str, help='Current view image (JPG)')
    parser.add_argument('--device', type=str, default='default', help='Device / session id')
    parser.add_argument('--server', type=str, default='http://localhost:3000',
                        help='Server URL (default: http://localhost:3000)')
    parser.add_argument('--timeout', type=int, default=30,
                        help='Response timeout in seconds (default: 30)')

    args = parser.parse_args()

    if bool(args.previous) != bool(args.current):
        print_error("Pass both --previous and --current, or neither")
        sys.exit(1)

    for image in (args.previous, args.current):
        if image and not Path(image).exists():
            print_error(f"Image file not found: {image}")
            sys.exit(1)

    print_header("BLINDAID TALK MODE TEST CLIENT")

    print(f"{Fore.CYAN}[1/3] Connecting to {args.server} as {args.device}...{Style.RESET_ALL}")
    try:
        sio.connect(args.server, auth={'device_id': args.device})
    except Exception as e:
        print_error(f"Failed to connect to server: {e}")
        print_warning("Make sure the server is running: python server.py")
        sys.exit(1)

    time.sleep(0.5)

    print(f"\n{Fore.CYAN}[2/3] Uploading image pair...{Style.RESET_ALL}")
    if args.previous:
        if not upload_pair(args.server, args.device, Path(args.previous), Path(args.current), args.timeout):
            sio.disconnect()
            sys.exit(1)
        if not ready_received.wait(args.timeout):
            print_warning("No talk:ready event received")
    else:
        print_warning("No images given, asking without a fresh pair")

    print(f"\n{Fore.CYAN}[3/3] Asking: \"{args.question}\"{Style.RESET_ALL}")
    sio.emit('talk:userinput', {'text': args.question})

    if not reply_received.wait(args.timeout):
        print_error(f"No reply received after {args.timeout} seconds")
        sio.disconnect()
        sys.exit(1)

    print_header("REPLY")
    print(f"{Fore.WHITE}{Style.BRIGHT}{last_reply.get('reply', '')}{Style.RESET_ALL}")

    time.sleep(0.5)
    sio.disconnect()


if __name__ == "__main__":
    main()
