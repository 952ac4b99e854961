class OS2LError(Exception):
    """ Base class for errors raised by the OS2L listener. """
