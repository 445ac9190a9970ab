#!/usr/bin/env python3
"""
Entry point for running mysql_entity_mapper as a module.
This file enables: python -m mysql_entity_mapper
"""

from .main import main

if __name__ == '__main__':
    main()
