"""
Error taxonomy for the whisper engine
"""


class DreadError(Exception):
    """Base class for engine errors"""


class InvalidRequest(DreadError):
    """Bad or missing input; no state was created"""


class NotFound(DreadError):
    """Unknown token or chain"""


class ConfigurationError(DreadError):
    """Required external credentials are missing"""
