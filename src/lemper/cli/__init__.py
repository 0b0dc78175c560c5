"""
LEMPer CLI - Provision a Linux, Nginx, MariaDB and PHP stack idempotently.

Commands:
    lemper nginx     Install or remove the Nginx web server
    lemper php       Install or remove PHP-FPM, Composer and PHP loaders
    lemper secure    Harden SSH and enable a firewall
    lemper cleanup   Remove conflicting web servers and unused packages
    lemper phalcon   Install or remove the Phalcon PHP extension
    lemper swap      Create or remove a swap file
    lemper list      List available installers

Every installer command runs as a dry run unless ``--execute`` is given.
"""

import click

from .installers import cleanup, list_installers, nginx, phalcon, php, secure, swap


@click.group()
@click.version_option(package_name="lemper")
def main():
    """LEMPer - Idempotent LEMP stack provisioning."""
    pass


# Register installer commands
main.add_command(nginx)
main.add_command(php)
main.add_command(secure)
main.add_command(cleanup)
main.add_command(phalcon)
main.add_command(swap)
main.add_command(list_installers)


if __name__ == "__main__":
    main()
