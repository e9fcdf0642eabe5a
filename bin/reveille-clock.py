#!/usr/bin/env python3
"""Reveille console alarm clock."""

from __future__ import annotations

from reveille.clock.app import run

if __name__ == "__main__":
    run()
