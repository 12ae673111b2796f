class WscatError(Exception):
    pass


class UsageError(WscatError):
    pass
