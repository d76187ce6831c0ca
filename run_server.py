#!/usr/bin/env python3
"""Скрипт запуска WebSub callback сервера."""

from websub_receiver.webhook.app import main

if __name__ == "__main__":
    main()
