import logging

LOGGER = logging.getLogger("dotnet_docker")

_handler = logging.StreamHandler()
_handler.setFormatter(logging.Formatter(fmt="%(levelname)s: %(message)s"))

LOGGER.addHandler(_handler)
