# shared/core/exceptions.py

class HostwatchError(Exception):
    """Base exception for all application errors"""
    pass

class ServiceError(HostwatchError):
    """Base exception for service layer errors"""
    pass

class SamplerError(HostwatchError):
    """Raised inside a sampler when a host read fails; never leaves the sampler"""
    pass

class PublishError(HostwatchError):
    """Raised when a snapshot could not be delivered to the aggregator"""
    pass

class ConfigurationError(HostwatchError):
    """Base exception for configuration errors"""
    pass
