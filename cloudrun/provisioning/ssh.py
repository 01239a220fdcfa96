"""SSH session: run commands with streamed output and upload files over scp."""

import logging
import os
import shlex
import socket
import stat
import sys
import time

import paramiko

from cloudrun.errors import RemoteExecutionError, TransferError, TransportError

logger = logging.getLogger(__name__)

BUFFER_SIZE = 1024
POLL_INTERVAL = 1.0


def read_ack(channel):
    """Read one scp acknowledgement from ``channel``.

    0 is success. 1 (error) and 2 (fatal) are followed by a message that
    runs up to the next newline; it becomes the TransferError message.
    """
    b = channel.recv(1)
    if b == b"\x00":
        return
    if b in (b"\x01", b"\x02"):
        message = bytearray()
        while True:
            c = channel.recv(1)
            if not c or c == b"\n":
                break
            message += c
        raise TransferError(message.decode(errors="replace"))
    raise TransferError("Failed to receive ACK")


class SshSession:
    """One authenticated SSH connection to a single host.

    The connection is opened on first use and reused until ``close()``.
    Use as a context manager so the connection is released on every exit path.
    """

    def __init__(self, host, username, key_file, port=22, poll_interval=POLL_INTERVAL):
        self.host = host
        self.username = username
        self.key_file = key_file
        self.port = port
        self.poll_interval = poll_interval
        self._client = None

    @classmethod
    def for_ledger(cls, ledger):
        """Build a session from the connection coordinates in a ResourceLedger."""
        if not ledger.host:
            raise TransportError("Ledger has no host to connect to")
        return cls(ledger.host, ledger.username, ledger.key_file)

    @property
    def address(self) -> str:
        return f"{self.username}@{self.host}" if self.username else self.host

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _new_client(self):
        return paramiko.SSHClient()

    def _transport(self):
        if self._client is None:
            logger.debug(f"SSH: connecting to {self.address}:{self.port}")
            client = self._new_client()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            try:
                client.connect(
                    hostname=self.host,
                    port=self.port,
                    username=self.username,
                    key_filename=self.key_file or None,
                )
            except (paramiko.SSHException, OSError) as e:
                client.close()
                raise TransportError(f"Failed to connect to {self.address}:{self.port}: {e}") from e
            self._client = client
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise TransportError(f"SSH transport to {self.address} is not active")
        return transport

    def _open_channel(self):
        try:
            return self._transport().open_session()
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"Failed to open channel to {self.address}: {e}") from e

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None

    def execute(self, command, stdin=None, sink=None):
        """Run ``command`` remotely, streaming combined output to ``sink``.

        Args:
            stdin: optional bytes sent to the command's standard input.
            sink: binary writable; defaults to this process's stdout.

        Raises:
            RemoteExecutionError: the command exited with a non-zero status.
            TransportError: the connection failed.
        """
        sink = sink if sink is not None else sys.stdout.buffer
        logger.debug(f"ssh {self.address}: {command}")
        channel = self._open_channel()
        try:
            channel.set_combine_stderr(True)
            channel.exec_command(command)
            pending = memoryview(stdin) if stdin is not None else None

            while True:
                progressed = False
                while channel.recv_ready():
                    data = channel.recv(BUFFER_SIZE)
                    if not data:
                        break
                    sink.write(data)
                    progressed = True
                if progressed and hasattr(sink, "flush"):
                    sink.flush()

                # Stdin goes out one buffer per pass, between output drains
                if pending is not None and channel.send_ready():
                    sent = channel.send(bytes(pending[:BUFFER_SIZE])) if pending else 0
                    pending = pending[sent:]
                    progressed = progressed or sent > 0
                    if not pending:
                        channel.shutdown_write()
                        pending = None

                if channel.exit_status_ready() and not channel.recv_ready():
                    break
                if not progressed:
                    time.sleep(self.poll_interval)

            exit_status = channel.recv_exit_status()
        except (paramiko.SSHException, socket.error) as e:
            raise TransportError(f"SSH command failed on {self.address}: {e}") from e
        finally:
            channel.close()

        if exit_status != 0:
            raise RemoteExecutionError(command, exit_status)

    def upload_file(self, local_path, remote_path):
        """Copy a local file to ``remote_path`` using the scp sink protocol.

        Raises:
            TransferError: the remote side did not acknowledge a message.
        """
        file_stat = os.stat(local_path)
        mode = stat.S_IMODE(file_stat.st_mode)
        header = f"C{mode:04o} {file_stat.st_size} {os.path.basename(local_path)}\n"

        logger.info(f"Uploading {local_path} -> {self.address}:{remote_path}")
        channel = self._open_channel()
        try:
            channel.exec_command(f"scp -t {shlex.quote(remote_path)}")
            read_ack(channel)

            channel.sendall(header.encode())
            read_ack(channel)

            with open(local_path, "rb") as f:
                for chunk in iter(lambda: f.read(BUFFER_SIZE), b""):
                    channel.sendall(chunk)
            channel.sendall(b"\x00")
            read_ack(channel)
            channel.shutdown_write()
        except (paramiko.SSHException, socket.error) as e:
            raise TransportError(f"Upload to {self.address} failed: {e}") from e
        finally:
            channel.close()
