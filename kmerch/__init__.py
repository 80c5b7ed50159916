import logging

logger = logging.getLogger("kmerch")
