"""Compose the one-shot initialisation script run on the Pi's first boot.

The script is placed on the boot partition and started through
``systemd.run=`` on the kernel command line. It applies the settings that
cannot be expressed as boot partition files (user password, SSH key,
hostname, timezone, locale, VNC) and then deletes itself, since it contains
secrets, and removes its ``systemd.*`` parameters from ``cmdline.txt``.
"""

from __future__ import annotations

import textwrap
from datetime import datetime
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Optional

from . import __version__
from .boot import INIT_SCRIPT_NAME
from .console import PROGRAM

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .settings import HeadlessSettings

PI_USERNAME = "pi"
PUBKEY_DELIMITER = "PUBKEY_EOF"


def sh_single_quote(value: str) -> str:
    """Quote ``value`` for a POSIX shell, always using single quotes."""

    return "'" + value.replace("'", "'\\''") + "'"


def _header(init_name: str, created: datetime) -> str:
    return textwrap.dedent(
        f"""\
        #!/bin/sh
        # {init_name}
        # Created by {PROGRAM} {__version__} ({created.strftime('%Y-%m-%dT%H:%M:%S%z')})
        #----------------------------------------------------------------

        if [ "$(id -u)" -ne 0 ]; then
          echo "{init_name}: error: root privileges required" >&2
          exit 1
        fi

        """
    )


def _password_section(password: str, init_name: str) -> str:
    errors_name = PurePosixPath(init_name).stem + ".errors"
    return textwrap.dedent(
        f"""\
        #----------------
        # Default "{PI_USERNAME}" user account: password

        USERNAME={sh_single_quote(PI_USERNAME)}
        PASSWORD={sh_single_quote(password)}

        ERRORS="/home/$USERNAME/{errors_name}"

        echo "$USERNAME:$PASSWORD" | chpasswd

        """
    )


def _pubkey_section(public_key: str) -> str:
    key_text = public_key.rstrip("\n")
    return (
        textwrap.dedent(
            f"""\
            #----------------
            # Default user account: authorized keys file with SSH public key

            if [ ! -e /home/$USERNAME/.ssh ]; then
              mkdir /home/$USERNAME/.ssh
              chown $USERNAME: /home/$USERNAME/.ssh
              chmod 755 /home/$USERNAME/.ssh
            fi

            cat >> /home/$USERNAME/.ssh/authorized_keys <<'{PUBKEY_DELIMITER}'
            """
        )
        + key_text
        + "\n"
        + textwrap.dedent(
            f"""\
            {PUBKEY_DELIMITER}

            chown $USERNAME: /home/$USERNAME/.ssh/authorized_keys
            chmod 644 /home/$USERNAME/.ssh/authorized_keys

            """
        )
    )


def _hostname_section(hostname: str) -> str:
    return textwrap.dedent(
        f"""\
        #----------------
        # Hostname

        NEW_HOSTNAME={sh_single_quote(hostname)}

        OLD_HOSTNAME=$(cat /etc/hostname)
        echo "$NEW_HOSTNAME" > /etc/hostname
        sed -i "s/\\t$OLD_HOSTNAME\\$/\\t$NEW_HOSTNAME/" /etc/hosts

        """
    )


def _timezone_section(timezone: str, init_name: str) -> str:
    return textwrap.dedent(
        f"""\
        #----------------
        # Timezone

        TIMEZONE={sh_single_quote(timezone)}

        if [ -e "/usr/share/zoneinfo/$TIMEZONE" ]; then
          ln -f -s "/usr/share/zoneinfo/$TIMEZONE" /etc/localtime
          echo "$TIMEZONE" > /etc/timezone
        else
          echo "{init_name}: error: unknown timezone: $TIMEZONE" >> "$ERRORS"
        fi

        """
    )


def _locale_section(locale: str, init_name: str) -> str:
    return textwrap.dedent(
        f"""\
        #----------------
        # Locale

        LOCALE={sh_single_quote(locale)}

        if LOCALE_LINE="$(grep "^$LOCALE " /usr/share/i18n/SUPPORTED)"; then
          ENCODING="$(echo $LOCALE_LINE | cut -f2 -d " ")"

          echo "$LOCALE $ENCODING" > /etc/locale.gen
          sed -i "s/^\\s*LANG=\\S*/LANG=$LOCALE/" /etc/default/locale

          dpkg-reconfigure -f noninteractive locales
        else
          echo "{init_name}: error: unknown locale: $LOCALE" >> "$ERRORS"
        fi

        """
    )


def _vnc_section(vnc_password: str, init_name: str) -> str:
    return textwrap.dedent(
        f"""\
        #----------------
        # VNC

        # The VNC password is limited to 8 characters, so the server only
        # accepts connections from localhost (use an SSH tunnel).

        VNC_PASSWORD={sh_single_quote(vnc_password)}

        VNC_COMMON_CUSTOM=/etc/vnc/config.d/common.custom
        VNC_ROOT_X11_CONFIG=/root/.vnc/config.d/vncserver-x11

        if which vncpasswd >/dev/null \\
           && [ -d "$(dirname "$VNC_COMMON_CUSTOM")" ] \\
           && [ -d "$(dirname "$VNC_ROOT_X11_CONFIG")" ]; then

          cat > $VNC_COMMON_CUSTOM <<VNC_EOF
        # RealVNC common custom config
        # $VNC_COMMON_CUSTOM
        # Created by {init_name} ($(date +%FT%T%z))

        Authentication=VncAuth
        $(echo "$VNC_PASSWORD" | vncpasswd -print)
        VNC_EOF

          if [ ! -e "$VNC_ROOT_X11_CONFIG" ]; then
            touch "$VNC_ROOT_X11_CONFIG"
          fi

          if ! grep -q '^IpClientAddresses=' "$VNC_ROOT_X11_CONFIG"; then
            echo 'IpClientAddresses=-' >> "$VNC_ROOT_X11_CONFIG"
          fi

          sed -i s/^IpClientAddresses=.*/IpClientAddresses=+127.0.0.1,+::1,-/ \\
              "$VNC_ROOT_X11_CONFIG"

          VNCSERVER_SERVICE=vncserver-x11-serviced.service
          if ! systemctl is-enabled $VNCSERVER_SERVICE >/dev/null ; then
            systemctl enable $VNCSERVER_SERVICE
          fi
        fi

        """
    )


def _cleanup_section(init_name: str) -> str:
    return textwrap.dedent(
        f"""\
        #----------------
        # Clean up

        # This script contains passwords: remove it.

        rm -f /boot/{init_name}

        sed -i 's| systemd\\.run=[^ ]*||' /boot/cmdline.txt
        sed -i 's| systemd\\.run_success_action=[^ ]*||' /boot/cmdline.txt
        sed -i 's| systemd\\.unit=[^ ]*||' /boot/cmdline.txt

        #EOF
        """
    )


def render_init_script(
    settings: "HeadlessSettings",
    *,
    created: Optional[datetime] = None,
    init_name: str = INIT_SCRIPT_NAME,
) -> str:
    if created is None:
        created = datetime.now().astimezone()

    sections = [
        _header(init_name, created),
        _password_section(settings.pi_password, init_name),
    ]
    if settings.ssh_public_key:
        sections.append(_pubkey_section(settings.ssh_public_key))
    sections.append(_hostname_section(settings.hostname))
    if settings.timezone:
        sections.append(_timezone_section(settings.timezone, init_name))
    if settings.locale:
        sections.append(_locale_section(settings.locale, init_name))
    if settings.vnc_password:
        sections.append(_vnc_section(settings.vnc_password, init_name))
    sections.append(_cleanup_section(init_name))
    return "".join(sections)


__all__ = ["PI_USERNAME", "PUBKEY_DELIMITER", "render_init_script", "sh_single_quote"]
