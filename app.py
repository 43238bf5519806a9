#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Application entrypoint for Sunrise Journal.

This file is intentionally minimal. It only boots the command line app.
"""
from __future__ import annotations

from sunrise_journal.app import main


if __name__ == "__main__":
    main()
