"""
Announces the listener on the local network with zeroconf (DNS-SD), so OS2L clients can find it without
being configured with an address. The listener registers the service when it starts and withdraws it when
it stops.
"""
import logging
import socket

from zeroconf import ServiceInfo, Zeroconf

from os2l.errors import OS2LError

logger = logging.getLogger(__name__)

SERVICE_TYPE = "os2l"


class DiscoveryError(OS2LError):
    """ The service could not be announced or withdrawn. """


def qualify_service_type(service_subtype):
    """
    >>> qualify_service_type("os2l")
    '_os2l._tcp.local.'
    """
    return "_" + service_subtype + "._tcp.local."


def local_addresses(host=None):
    """
    Determines the IPv4 addresses to announce. A specific host address is used as given. Otherwise the addresses of
    this machine's hostname are used, preferring those that are not loopback addresses.
    """
    if host and host not in ('0.0.0.0', ''):
        return [host]
    try:
        addresses = socket.gethostbyname_ex(socket.gethostname())[2]
    except OSError as e:
        logger.debug("unable to resolve local hostname: %s", e)
        addresses = []
    routable = [a for a in addresses if not a.startswith('127.')]
    return routable or addresses or ['127.0.0.1']


class ServicePublisher:
    """
    Publishes a single TCP service with zeroconf.

    :param zeroconf_factory: creates the Zeroconf instance when the service is published
    """
    def __init__(self, zeroconf_factory=Zeroconf):
        self.zeroconf_factory = zeroconf_factory
        self.zeroconf = None
        self.info = None

    @property
    def published(self) -> bool:
        return self.info is not None

    @staticmethod
    def service_info(name, type_, port, addresses) -> ServiceInfo:
        fqn = qualify_service_type(type_)
        return ServiceInfo(
            fqn, "%s.%s" % (name, fqn),
            port=port,
            addresses=[socket.inet_aton(a) for a in addresses],
            server="%s.local." % socket.gethostname().split('.')[0],
            properties={})

    def publish(self, name, type_, port, host=None):
        """
        Registers the service.
        :raises DiscoveryError: if the service could not be registered.
        """
        if self.published:
            self.stop()
        try:
            info = self.service_info(name, type_, port, local_addresses(host))
            self.zeroconf = self.zeroconf_factory()
            self.zeroconf.register_service(info, allow_name_change=True)
            self.info = info
            logger.info("published service %s on port %d", info.name, port)
        except Exception as e:
            self._close()
            raise DiscoveryError("unable to publish service %s: %s" % (name, e)) from e

    def stop(self):
        """
        Withdraws the service, if it was published, and releases zeroconf.
        :raises DiscoveryError: if the service could not be withdrawn. Zeroconf is released regardless.
        """
        info = self.info
        self.info = None
        try:
            if info is not None and self.zeroconf is not None:
                self.zeroconf.unregister_service(info)
                logger.info("withdrew service %s", info.name)
        except Exception as e:
            raise DiscoveryError("unable to withdraw service %s: %s" % (info.name, e)) from e
        finally:
            self._close()

    def _close(self):
        zeroconf = self.zeroconf
        self.zeroconf = None
        if zeroconf is not None:
            try:
                zeroconf.close()
            except Exception as e:
                logger.debug("error closing zeroconf: %s", e)
