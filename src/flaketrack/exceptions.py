class FlaketrackException(Exception):
    pass


class ValidationError(FlaketrackException):
    pass


class ConfigurationError(FlaketrackException):
    pass


class ProjectNotFound(FlaketrackException):
    pass


class DuplicateProject(FlaketrackException):
    pass


class FlaketrackQueryException(FlaketrackException):
    pass
