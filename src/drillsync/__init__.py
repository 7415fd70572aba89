from drillsync.consts import VERSION

__version__ = VERSION
