#!/usr/bin/env python3
"""Backup runner"""
from mysql_s3_backup.cli import main

if __name__ == '__main__':
    main()
