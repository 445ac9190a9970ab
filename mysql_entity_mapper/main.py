#!/usr/bin/env python3

import argparse
import logging
import sys

from .config import Settings
from .orm import Orm


def set_logging_config(tags, log_level_str=None):
    """Configure logging to output only to stderr."""
    handlers = [logging.StreamHandler(sys.stderr)]

    log_levels = {
        'critical': logging.CRITICAL,
        'error': logging.ERROR,
        'warning': logging.WARNING,
        'info': logging.INFO,
        'debug': logging.DEBUG,
    }

    log_level = log_levels.get(log_level_str)
    if log_level is None:
        logging.warning(f'Unknown log level {log_level_str}, setting info')
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format=f'[{tags} %(asctime)s %(levelname)8s] %(message)s',
        handlers=handlers,
    )


def describe_entities(orm: Orm, out=None):
    out = out or sys.stdout
    for meta in orm.get_metadata():
        lines = meta.to_table_structure().describe()
        print(f'{meta.class_name} -> {lines[0]}', file=out)
        for line in lines[1:]:
            print(line, file=out)


def run_describe(args, config: Settings):
    set_logging_config('describe', log_level_str=config.log_level)
    orm = Orm.init(config)
    try:
        describe_entities(orm)
    finally:
        orm.close()


def run_check_connection(args, config: Settings):
    set_logging_config('check', log_level_str=config.log_level)
    orm = Orm.init(config, entities=[])
    try:
        orm.api.execute('select 1')
        version = orm.api.get_server_version()
    except Exception as e:
        logging.error(f'connection to {config.mysql.host}:{config.mysql.port} failed: {e}')
        raise
    finally:
        orm.close()
    logging.info(f'connected to {config.mysql.host}:{config.mysql.port}, server version {version}')
    print(version)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "mode", help="run mode",
        type=str,
        choices=["describe", "check_connection"])
    parser.add_argument("--config", help="config file path", default='config.yaml', type=str)
    args = parser.parse_args()

    config = Settings()
    config.load(args.config)

    if args.mode == 'describe':
        run_describe(args, config)
    if args.mode == 'check_connection':
        run_check_connection(args, config)


if __name__ == '__main__':
    main()
