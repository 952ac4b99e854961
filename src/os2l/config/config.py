import logging
import numbers
import os
from collections.abc import Mapping

from configobj import ConfigObj, ConfigObjError, flatten_errors
from configobj.validate import Validator

from os2l.errors import OS2LError

logger = logging.getLogger(__name__)

# The default extension for configuration files
config_extension = '.cfg'

# the section in configuration files holding the server options
server_section = 'server'

DEFAULT_PORT = 1503


class ConfigError(OS2LError, ValueError):
    """ The options or configuration file are not valid. """


def _is_integer(value):
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def _is_number(value):
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


class ServerConfig:
    """
    The options for an OS2L listener.

    :param port: the TCP port to listen on. 0 picks a free port.
    :param publish: announce the listener with zeroconf
    :param host: the address to bind to. The empty string binds all interfaces.
    :param service_name: the instance name used when announcing the service
    :param max_buffer: the largest number of characters buffered while waiting for a frame end. 0 is unbounded.
    :param accept_timeout: how often, in seconds, the accept loop checks for a stop request
    """
    aliases = {'doPublish': 'publish'}

    def __init__(self, port=DEFAULT_PORT, publish=True, host='', service_name='os2l', max_buffer=0,
                 accept_timeout=0.5):
        self.port = port
        self.publish = publish
        self.host = host
        self.service_name = service_name
        self.max_buffer = max_buffer
        self.accept_timeout = accept_timeout
        self.validate()

    @classmethod
    def option_names(cls):
        return ('port', 'publish', 'host', 'service_name', 'max_buffer', 'accept_timeout')

    @classmethod
    def from_options(cls, options=None, **kwargs):
        """
        Builds a configuration from a mapping of options and/or keyword arguments.
        :raises ConfigError: when an option is unknown or has the wrong type.
        """
        if options is None:
            options = {}
        if isinstance(options, ServerConfig):
            options = options.as_dict()
        if not isinstance(options, Mapping):
            raise ConfigError("Expected a mapping for options, got %s" % type(options).__name__)
        values = {}
        for key, value in list(options.items()) + list(kwargs.items()):
            name = cls.aliases.get(key, key)
            if name not in cls.option_names():
                raise ConfigError("Unknown option '%s'" % key)
            values[name] = value
        return cls(**values)

    def validate(self):
        if not _is_integer(self.port) or not 0 <= self.port <= 65535:
            raise ConfigError("port must be an integer between 0 and 65535, got %r" % (self.port,))
        if not isinstance(self.publish, bool):
            raise ConfigError("publish must be a boolean, got %r" % (self.publish,))
        if not isinstance(self.host, str):
            raise ConfigError("host must be a string, got %r" % (self.host,))
        if not isinstance(self.service_name, str) or not self.service_name:
            raise ConfigError("service_name must be a non-empty string, got %r" % (self.service_name,))
        if not _is_integer(self.max_buffer) or self.max_buffer < 0:
            raise ConfigError("max_buffer must be a non-negative integer, got %r" % (self.max_buffer,))
        if not _is_number(self.accept_timeout) or self.accept_timeout <= 0:
            raise ConfigError("accept_timeout must be a positive number, got %r" % (self.accept_timeout,))

    def as_dict(self):
        return {name: getattr(self, name) for name in self.option_names()}

    def __eq__(self, other):
        return isinstance(other, ServerConfig) and self.as_dict() == other.as_dict()

    def __repr__(self):
        return "ServerConfig(%s)" % ", ".join("%s=%r" % item for item in self.as_dict().items())


def schema_filename():
    """ the configspec used to validate configuration files """
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), 'os2l.schema' + config_extension)


def user_config_filename():
    """ the per-user configuration file, which overrides the defaults """
    return os.path.expanduser('~/.os2l' + config_extension)


def load_config_file_base(file, must_exist=True):
    """
    Loads a configuration file
    :param file:        The configuration file to load
    :param must_exist:  when True, the file must exist or an exception is thrown.
    :return: The ConfigObj instance for the file.
    """
    if must_exist or os.path.exists(file):
        return ConfigObj(file, interpolation='Template', file_error=True)
    return ConfigObj()


def load_config(file=None, user_file=True) -> ServerConfig:
    """
        Loads the server configuration.
        Configurations are loaded in this order, later values overriding earlier ones:
        - the defaults from the schema
        - the user configuration ~/.os2l.cfg, if user_file is True and the file exists
        - the given file, which must exist
        The result is validated against the schema.
    :raises ConfigError: if the configuration does not validate.
    :raises IOError: if the given file does not exist.
    """
    config = ConfigObj(configspec=schema_filename())
    try:
        if user_file:
            config.merge(load_config_file_base(user_config_filename(), must_exist=False))
        if file is not None:
            config.merge(load_config_file_base(file))
    except ConfigObjError as e:
        raise ConfigError("the config file could not be read: %s" % e) from e

    result = config.validate(Validator(), preserve_errors=True)
    if result is not True:
        failures = []
        for section_list, key, res in flatten_errors(config, result):
            section = ', '.join(section_list)
            if key is not None:
                failures.append('"%s" in section "%s": %s' % (key, section, res))
            else:
                failures.append('missing section "%s"' % section)
        for failure in failures:
            logger.error("configuration failed validation: %s", failure)
        raise ConfigError("the config failed validation: %s" % "; ".join(failures))
    return ServerConfig.from_options(dict(config[server_section]))
