class MinerError(Exception):
    pass


class ConfigurationError(MinerError):
    pass


class PlanningContradiction(MinerError):
    pass


class OperationCancelled(MinerError):
    pass


class TransferError(MinerError):
    def __init__(self, message: str, url: str = None):
        super().__init__(message)
        self.url = url


class TransferTransient(TransferError):
    """Connection reset while transferring. Safe to retry."""


class TransferFatal(TransferError):
    pass


class ExtractionError(MinerError):
    pass


class ExtractionFormatUnrecognized(ExtractionError):
    pass


class SevenZipError(ExtractionError):
    pass


class JobFailure(MinerError):
    def __init__(self, message: str, job_name: str = None):
        super().__init__(message)
        self.job_name = job_name
