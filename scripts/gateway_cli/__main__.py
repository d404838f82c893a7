#!/usr/bin/env python3
"""Entry point for running as module: python -m gateway_cli"""
from gateway_cli.cli import main

if __name__ == "__main__":
    main()
