#!/usr/bin/env python3
"""
Cloud Import - Unified Entry Point

Detects which provider credentials are available and runs the matching
import script. Everything after `--` is passed to that script.

Usage:
    # Auto-detect
    python cloud_import.py

    # Direct provider selection
    python cloud_import.py --provider aws
    python cloud_import.py --provider azure -- --location eastus
    python cloud_import.py --provider kubernetes -- --context prod-admin --mode register
"""
import argparse
import os
import subprocess
import sys
from typing import List, Optional

# ANSI colors for terminal output
class Colors:
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BOLD = '\033[1m'
    END = '\033[0m'

def color(text: str, c: str) -> str:
    """Apply color if terminal supports it."""
    if sys.stdout.isatty():
        return f"{c}{text}{Colors.END}"
    return text


PROVIDER_SCRIPTS = {
    'aws': 'aws_import.py',
    'azure': 'azure_import.py',
    'kubernetes': 'k8s_import.py',
}


# =============================================================================
# Credential Detection
# =============================================================================

def detect_aws() -> bool:
    """Check if AWS credentials are available."""
    if os.environ.get('AWS_ACCESS_KEY_ID') or os.environ.get('AWS_PROFILE'):
        return True
    if os.environ.get('AWS_EXECUTION_ENV'):
        return True
    return (os.path.exists(os.path.expanduser('~/.aws/credentials'))
            or os.path.exists(os.path.expanduser('~/.aws/config')))


def detect_azure() -> bool:
    """Check if an Azure subscription and credentials are available."""
    if not os.environ.get('ARM_SUBSCRIPTION_ID'):
        return False
    if os.environ.get('ARM_OIDC_TOKEN') or os.environ.get('AZURE_CLIENT_ID'):
        return True
    return os.path.exists(os.path.expanduser('~/.azure/azureProfile.json'))


def detect_kubernetes() -> bool:
    """Check if a kubeconfig is available."""
    kubeconfig = os.environ.get('KUBECONFIG')
    if kubeconfig:
        return any(os.path.exists(os.path.expanduser(p)) for p in kubeconfig.split(os.pathsep) if p)
    return os.path.exists(os.path.expanduser('~/.kube/config'))


def auto_detect_providers() -> List[str]:
    """Detect which providers have credentials configured."""
    detectors = [
        ('aws', detect_aws),
        ('azure', detect_azure),
        ('kubernetes', detect_kubernetes),
    ]
    return [provider for provider, detector in detectors if detector()]


def choose_provider(detected: List[str]) -> Optional[str]:
    """Ask the user to pick one of several detected providers."""
    print(color("Multiple providers detected. Select one:\n", Colors.BOLD))
    for i, p in enumerate(detected, 1):
        print(f"  {color(str(i), Colors.GREEN)}) {p}")
    print()

    try:
        choice = input(color("Enter choice: ", Colors.CYAN)).strip().lower()
    except (KeyboardInterrupt, EOFError):
        print()
        return None

    if choice in detected:
        return choice
    try:
        idx = int(choice) - 1
    except ValueError:
        return None
    return detected[idx] if 0 <= idx < len(detected) else None


# =============================================================================
# Execution
# =============================================================================

def run_provider(provider: str, extra_args: List[str]) -> int:
    """
    Run the import script for a provider.
    Returns the exit code from the script.
    """
    script = PROVIDER_SCRIPTS.get(provider)
    if not script:
        print(color(f"Unknown provider: {provider}", Colors.RED))
        return 1

    script_dir = os.path.dirname(os.path.abspath(__file__))
    script_path = os.path.join(script_dir, script)
    if not os.path.exists(script_path):
        print(color(f"Import script not found: {script_path}", Colors.RED))
        return 1

    cmd = [sys.executable, script_path] + extra_args

    print(color(f"\n{'─'*60}", Colors.CYAN))
    print(color(f"  Starting {provider} discovery...", Colors.BOLD))
    print(color(f"{'─'*60}\n", Colors.CYAN))

    try:
        result = subprocess.run(cmd)
        return result.returncode
    except KeyboardInterrupt:
        print(color("\n\nDiscovery interrupted by user.", Colors.YELLOW))
        return 130


def main():
    parser = argparse.ArgumentParser(
        description="Cloud Import - Unified Entry Point",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cloud_import.py                                  # Auto-detect
  python cloud_import.py --provider aws                   # AWS only
  python cloud_import.py --provider azure -- --workers 20 # Pass args to the script
"""
    )
    parser.add_argument(
        '--provider', '-p',
        choices=sorted(PROVIDER_SCRIPTS),
        help='Provider to discover'
    )
    parser.add_argument(
        '--config',
        metavar='FILE',
        help='Path to YAML config file'
    )

    # Parse known args, rest goes to the provider script
    args, extra_args = parser.parse_known_args()
    if extra_args and extra_args[0] == '--':
        extra_args = extra_args[1:]
    if args.config:
        extra_args = ['--config', args.config] + extra_args

    if args.provider:
        provider = args.provider
    else:
        print(color("Detecting credentials...\n", Colors.CYAN))
        detected = auto_detect_providers()

        if not detected:
            print(color("No provider credentials detected.\n", Colors.YELLOW))
            print("Configure credentials, then run again:")
            print("  AWS:        aws configure")
            print("  Azure:      az login && export ARM_SUBSCRIPTION_ID=...")
            print("  Kubernetes: export KUBECONFIG=...")
            sys.exit(1)

        print(color(f"✓ Found credentials for: {', '.join(detected)}\n", Colors.GREEN))

        if len(detected) == 1:
            provider = detected[0]
        else:
            chosen = choose_provider(detected)
            if not chosen:
                print(color("Invalid choice.", Colors.RED))
                sys.exit(1)
            provider = chosen

    exit_code = run_provider(provider, extra_args)

    if exit_code == 0:
        print(color(f"\n✓ {provider} discovery completed successfully!\n", Colors.GREEN))
    else:
        print(color(f"\n✗ Discovery exited with code {exit_code}\n", Colors.RED))

    sys.exit(exit_code)


if __name__ == '__main__':
    main()
