#!/usr/bin/env python3
"""
xui-deploy - 3x-ui panel behind a local NGINX TLS proxy

Provisions a single Debian/Ubuntu host:
    - Installs nginx, certbot, Docker and the compose plugin when missing
    - Obtains a Let's Encrypt certificate (webroot or standalone HTTP-01)
    - Writes an NGINX vhost that terminates TLS and proxies to the panel
    - Writes docker-compose.yml for 3x-ui and starts it

Usage:
    sudo python3 deploy.py example.com [8443]
    sudo python3 deploy.py -d example.com -e admin@example.com [-p 8443]
    sudo python3 deploy.py -c config.yaml

Requirements:
    - Python 3.8+
    - PyYAML: pip3 install pyyaml
    - Root privileges on the target host
"""

import argparse
import os
import re
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import yaml


DEFAULT_TLS_PORT = 8443
DEFAULT_PANEL_PORT = 2053
DEFAULT_WORKDIR = "/opt/docker"
DEFAULT_IMAGE = "ghcr.io/mhsanaei/3x-ui:latest"
ACME_MODES = ("webroot", "standalone")

HOSTNAME_LABEL = re.compile(r'[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?')
EMAIL_PATTERN = re.compile(r'[^@\s;]+@[^@\s;]+')


# =========================================================================
# Errors
# =========================================================================

class DeployError(RuntimeError):
    """Fatal deployment failure, aborts the run"""


class ConfigurationError(DeployError):
    """Missing or invalid input, raised before the host is touched"""


class DependencyInstallError(DeployError):
    """Package manager failure"""


class ChallengePreparationError(DeployError):
    """Bootstrap vhost could not be written, validated or loaded"""


class CertificateAcquisitionError(DeployError):
    """certbot failed or left no certificate behind"""


class VhostWriteError(DeployError):
    """Final TLS vhost failed validation or reload"""


class ManifestOrLaunchError(DeployError):
    """Compose manifest could not be written or the stack failed to start"""


# =========================================================================
# Request resolution
# =========================================================================

@dataclass(frozen=True)
class ProvisionRequest:
    domain: str
    email: str
    tls_port: int = DEFAULT_TLS_PORT
    workdir: Path = field(default_factory=lambda: Path(DEFAULT_WORKDIR))
    acme_mode: str = "webroot"
    force_renew: bool = False
    staging: bool = False
    panel_port: int = DEFAULT_PANEL_PORT
    image: str = DEFAULT_IMAGE
    ipv6: bool = True


@dataclass(frozen=True)
class CertificateBundle:
    fullchain: Path
    privkey: Path

    def exists(self) -> bool:
        return self.fullchain.is_file() and self.privkey.is_file()

    def missing(self) -> List[Path]:
        return [p for p in (self.fullchain, self.privkey) if not p.is_file()]


def is_valid_hostname(domain: str) -> bool:
    """Strict DNS hostname check, the domain is interpolated into config files"""
    if not domain or len(domain) > 253:
        return False
    labels = domain.split('.')
    if len(labels) < 2:
        return False
    if not all(HOSTNAME_LABEL.fullmatch(label) for label in labels):
        return False
    return labels[-1].isalpha()


def load_config(path: str) -> dict:
    """Load YAML configuration file"""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file {config_path} not found")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Config file {config_path} is not valid YAML: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    return data


def _parse_port(value, name: str) -> int:
    # YAML `true` is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    try:
        port = int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if not 1 <= port <= 65535:
        raise ConfigurationError(f"{name} must be between 1 and 65535, got {port}")
    return port


def _normalize_domain(value) -> str:
    return str(value).strip().lower().rstrip('.')


def _parse_flag(config: dict, key: str, default: bool) -> bool:
    value = config.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"{key} must be true or false, got {value!r}")
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xui-deploy",
        description="Deploy 3x-ui behind NGINX with a Let's Encrypt certificate",
    )
    parser.add_argument("pos_domain", nargs="?", metavar="domain",
                        help="domain name (alternative to -d)")
    parser.add_argument("pos_port", nargs="?", metavar="https-port",
                        help="TLS port (alternative to -p)")
    parser.add_argument("-d", "--domain", help="domain name pointing to this host")
    parser.add_argument("-e", "--email", help="Let's Encrypt contact (default: admin@<domain>)")
    parser.add_argument("-p", "--port", dest="tls_port",
                        help=f"TLS port NGINX listens on (default: {DEFAULT_TLS_PORT})")
    parser.add_argument("-w", "--workdir", help=f"compose working directory (default: {DEFAULT_WORKDIR})")
    parser.add_argument("-c", "--config", help="YAML config file")
    parser.add_argument("--standalone", action="store_true",
                        help="stop nginx and let certbot bind port 80 itself")
    parser.add_argument("--force-renew", action="store_true",
                        help="request a new certificate even if one exists")
    parser.add_argument("--staging", action="store_true",
                        help="use the Let's Encrypt staging environment")
    parser.add_argument("--no-ipv6", action="store_true",
                        help="listen on IPv4 only (hosts with IPv6 disabled)")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> ProvisionRequest:
    """Resolve CLI input and optional config file into a ProvisionRequest"""
    args = _build_parser().parse_args(argv)
    config = load_config(args.config) if args.config else {}

    if args.domain and args.pos_domain and _normalize_domain(args.domain) != _normalize_domain(args.pos_domain):
        # `-d example.com 9443` lands the port in the domain slot
        raise ConfigurationError(
            f"Conflicting domains: -d {args.domain} and positional {args.pos_domain}. "
            f"Use -p for the TLS port when passing -d"
        )
    domain = args.domain or args.pos_domain or config.get('domain')
    if not domain:
        raise ConfigurationError("Domain is required. Use -d <domain> or pass it as the first argument")
    domain = _normalize_domain(domain)
    if not is_valid_hostname(domain):
        raise ConfigurationError(f"Invalid domain name: {domain!r}")

    if args.tls_port is not None and args.pos_port is not None and str(args.tls_port) != str(args.pos_port):
        raise ConfigurationError(f"Conflicting TLS ports: -p {args.tls_port} and positional {args.pos_port}")
    raw_port = args.tls_port or args.pos_port or config.get('tls_port', DEFAULT_TLS_PORT)
    tls_port = _parse_port(raw_port, "TLS port")
    panel_port = _parse_port(config.get('panel_port', DEFAULT_PANEL_PORT), "Panel port")

    if tls_port == 80:
        raise ConfigurationError("TLS port cannot be 80, it is used for the HTTP redirect")
    if tls_port == panel_port:
        raise ConfigurationError(f"TLS port {tls_port} collides with the 3x-ui panel port")

    email = args.email or config.get('email') or f"admin@{domain}"
    email = str(email).strip()
    if not EMAIL_PATTERN.fullmatch(email):
        raise ConfigurationError(f"Invalid email address: {email!r}")

    acme_mode = "standalone" if args.standalone else str(config.get('acme_mode', 'webroot'))
    if acme_mode not in ACME_MODES:
        raise ConfigurationError(f"acme_mode must be one of {', '.join(ACME_MODES)}, got {acme_mode!r}")

    workdir = Path(args.workdir or config.get('workdir', DEFAULT_WORKDIR))
    if not workdir.is_absolute():
        workdir = workdir.resolve()

    image = str(config.get('image', DEFAULT_IMAGE)).strip()
    if not image or any(c.isspace() for c in image):
        raise ConfigurationError(f"Invalid image reference: {image!r}")

    return ProvisionRequest(
        domain=domain,
        email=email,
        tls_port=tls_port,
        workdir=workdir,
        acme_mode=acme_mode,
        force_renew=args.force_renew or _parse_flag(config, 'force_renew', False),
        staging=args.staging or _parse_flag(config, 'staging', False),
        panel_port=panel_port,
        image=image,
        ipv6=_parse_flag(config, 'ipv6', True) and not args.no_ipv6,
    )


# =========================================================================
# Deployer
# =========================================================================

class XuiDeployer:
    """Single-host deployment of 3x-ui behind NGINX"""

    NGINX_SITES_AVAILABLE = "/etc/nginx/sites-available"
    NGINX_SITES_ENABLED = "/etc/nginx/sites-enabled"
    LE_LIVE_BASE = "/etc/letsencrypt/live"
    ACME_WEBROOT = "/var/www/letsencrypt"
    NGINX_USER = "www-data"
    COMPOSE_FILE = "docker-compose.yml"

    BASE_PACKAGES = ["ca-certificates", "curl", "gnupg", "lsb-release", "software-properties-common"]
    COMPOSE_PACKAGES = ["docker-compose-plugin", "docker-compose-v2"]
    SSL_CIPHERS = (
        "ECDHE-ECDSA-AES128-GCM-SHA256:ECDHE-RSA-AES128-GCM-SHA256:"
        "ECDHE-ECDSA-AES256-GCM-SHA384:ECDHE-RSA-AES256-GCM-SHA384"
    )

    TOTAL_STEPS = 7

    def __init__(self, request: ProvisionRequest):
        self.request = request
        self.sites_available = Path(self.NGINX_SITES_AVAILABLE)
        self.sites_enabled = Path(self.NGINX_SITES_ENABLED)
        self.le_live_base = Path(self.LE_LIVE_BASE)
        self.acme_webroot = Path(self.ACME_WEBROOT)
        self._apt_updated = False

    # -------------------------------------------------------------------------
    # Command execution
    # -------------------------------------------------------------------------

    def _run(self, command: List[str], timeout: int = 120, cwd: Optional[Path] = None,
             env: Optional[Dict[str, str]] = None) -> Tuple[int, str, str]:
        """Execute local command"""
        run_env = None
        if env:
            run_env = dict(os.environ)
            run_env.update(env)

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=str(cwd) if cwd else None,
                env=run_env,
            )
            return result.returncode, result.stdout, result.stderr
        except subprocess.TimeoutExpired:
            return -1, "", "Command timeout"
        except FileNotFoundError as e:
            return 127, "", str(e)

    def _run_checked(self, command: List[str], error: type, timeout: int = 120,
                     cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> str:
        """Execute command, raise `error` on non-zero exit"""
        code, stdout, stderr = self._run(command, timeout=timeout, cwd=cwd, env=env)
        if code != 0:
            detail = (stderr or stdout).strip()
            raise error(f"Command failed ({code}): {' '.join(command)}\n{detail}")
        return stdout

    def _print_step(self, step: int, total: int, message: str):
        """Print step information"""
        print(f"\n[{step}/{total}] {message}")
        print("=" * 50)

    def _require_root(self):
        if os.geteuid() != 0:
            raise ConfigurationError("Run as root")

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    @property
    def vhost_path(self) -> Path:
        return self.sites_available / self.request.domain

    @property
    def enabled_path(self) -> Path:
        return self.sites_enabled / self.request.domain

    @property
    def compose_path(self) -> Path:
        return self.request.workdir / self.COMPOSE_FILE

    def certificate_bundle(self) -> CertificateBundle:
        live_dir = self.le_live_base / self.request.domain
        return CertificateBundle(fullchain=live_dir / "fullchain.pem", privkey=live_dir / "privkey.pem")

    # =========================================================================
    # File Generation
    # =========================================================================

    def render_bootstrap_vhost(self) -> str:
        """Generate HTTP-only vhost answering ACME HTTP-01 challenges"""
        domain = self.request.domain
        listen_v6 = "\n    listen [::]:80;" if self.request.ipv6 else ""
        return f'''# ACME bootstrap vhost for {domain}
# Auto-generated by xui-deploy, replaced once the certificate is issued

server {{
    listen 80;{listen_v6}
    server_name {domain};

    location /.well-known/acme-challenge/ {{
        root {self.acme_webroot};
    }}

    location / {{
        return 200 "OK";
    }}
}}
'''

    def render_tls_vhost(self) -> str:
        """Generate final vhost: HTTP redirect plus TLS reverse proxy to the panel"""
        request = self.request
        domain = request.domain
        tls_port = request.tls_port
        bundle = self.certificate_bundle()
        listen_v6 = "\n    listen [::]:80;" if request.ipv6 else ""
        listen_v6_tls = f"\n    listen [::]:{tls_port} ssl;" if request.ipv6 else ""

        return f'''# 3x-ui TLS reverse proxy for {domain}
# Auto-generated by xui-deploy

server {{
    listen 80;{listen_v6}
    server_name {domain};

    location /.well-known/acme-challenge/ {{
        root {self.acme_webroot};
    }}

    location / {{
        return 301 https://{domain}:{tls_port}$request_uri;
    }}
}}

server {{
    listen {tls_port} ssl;{listen_v6_tls}
    server_name {domain};

    ssl_certificate {bundle.fullchain};
    ssl_certificate_key {bundle.privkey};
    ssl_protocols TLSv1.2 TLSv1.3;
    ssl_ciphers {self.SSL_CIPHERS};
    ssl_prefer_server_ciphers off;
    ssl_session_cache shared:SSL:10m;
    ssl_session_timeout 1d;

    # Client configs and backups can be large
    client_max_body_size 50m;

    location / {{
        proxy_pass http://127.0.0.1:{request.panel_port};

        proxy_set_header Host $http_host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_set_header Range $http_range;
        proxy_set_header If-Range $http_if_range;

        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection "upgrade";
        proxy_redirect off;
    }}
}}
'''

    def render_compose(self) -> str:
        """Generate docker-compose.yml for 3x-ui"""
        request = self.request
        workdir = request.workdir
        # Host networking: the panel listens on 127.0.0.1:{panel_port} without port mapping
        return f'''# 3x-ui Docker Compose Configuration
# Auto-generated by xui-deploy

services:
  3x-ui:
    image: {request.image}
    container_name: 3x-ui
    hostname: {request.domain}
    network_mode: host
    tty: true
    restart: unless-stopped
    environment:
      XRAY_VMESS_AEAD_FORCED: "false"
    volumes:
      - {workdir}/db/:/etc/x-ui/
      - {workdir}/cert/:/root/cert/
      - /etc/letsencrypt/:/etc/letsencrypt/:rw
'''

    def build_certbot_command(self) -> List[str]:
        """Build certbot certonly command line for the configured mode"""
        request = self.request
        cmd = ["certbot", "certonly"]
        if request.acme_mode == "standalone":
            cmd.append("--standalone")
        else:
            cmd.extend(["--webroot", "-w", str(self.acme_webroot)])

        cmd.extend([
            "--non-interactive",
            "--agree-tos",
            "--no-eff-email",
            "--email", request.email,
            "-d", request.domain,
        ])
        if request.force_renew:
            cmd.append("--force-renewal")
        if request.staging:
            cmd.append("--staging")
        return cmd

    # =========================================================================
    # Host helpers
    # =========================================================================

    @staticmethod
    def _write_atomic(path: Path, content: str):
        """Replace file content via temp file + rename in the same directory"""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(content)
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _enable_site(self):
        """Link sites-available/<domain> into sites-enabled, tolerating an existing link"""
        link = self.enabled_path
        target = self.vhost_path
        link.parent.mkdir(parents=True, exist_ok=True)

        if link.is_symlink() and Path(os.readlink(link)) == target:
            return
        if link.is_symlink() or link.exists():
            print(f"  Replacing stale {link}")
            link.unlink()
        link.symlink_to(target)

    def _nginx_is_active(self) -> bool:
        code, _, _ = self._run(["systemctl", "is-active", "--quiet", "nginx"])
        return code == 0

    def _reload_nginx(self, error: type):
        """Validate config and reload nginx, starting it if it is down"""
        self._run_checked(["nginx", "-t"], error)
        if self._nginx_is_active():
            self._run_checked(["systemctl", "reload", "nginx"], error)
        else:
            self._run_checked(["systemctl", "start", "nginx"], error)

    def _has_binary(self, name: str) -> bool:
        return shutil.which(name) is not None

    def _package_installed(self, pkg: str) -> bool:
        code, _, _ = self._run(["dpkg", "-s", pkg])
        return code == 0

    def _compose_available(self) -> bool:
        code, _, _ = self._run(["docker", "compose", "version"])
        return code == 0

    def _apt_install(self, pkg: str):
        if not self._apt_updated:
            self._run_checked(["apt-get", "update", "-y"], DependencyInstallError, timeout=600)
            self._apt_updated = True
        self._run_checked(
            ["apt-get", "install", "-y", pkg],
            DependencyInstallError,
            timeout=900,
            env={"DEBIAN_FRONTEND": "noninteractive"},
        )

    # =========================================================================
    # Deployment Steps
    # =========================================================================

    def ensure_package(self, pkg: str) -> bool:
        """Install a Debian package unless dpkg already knows it; True if installed now"""
        if self._package_installed(pkg):
            return False
        print(f"  Installing package: {pkg}")
        self._apt_install(pkg)
        return True

    def install_dependencies(self):
        """Install nginx, Docker, compose v2 and certbot when missing"""
        print("Checking dependencies...")
        for pkg in self.BASE_PACKAGES:
            self.ensure_package(pkg)

        if not self._has_binary("nginx"):
            print("  Installing nginx...")
            self._apt_install("nginx")
            self._run_checked(["systemctl", "enable", "nginx"], DependencyInstallError)
        else:
            print("  nginx is installed")

        if not self._has_binary("docker"):
            print("  Installing Docker...")
            self._apt_install("docker.io")
            self._run_checked(["systemctl", "enable", "--now", "docker"], DependencyInstallError)
        else:
            print("  Docker is installed")

        if not self._compose_available():
            print("  Installing docker compose v2...")
            self._install_compose()
        else:
            print("  docker compose is installed")

        if not self._has_binary("certbot"):
            print("  Installing certbot...")
            self._apt_install("certbot")
        else:
            print("  certbot is installed")

    def _install_compose(self):
        # Package name differs between Docker's repo and the distro archive
        errors = []
        for pkg in self.COMPOSE_PACKAGES:
            try:
                self._apt_install(pkg)
            except DependencyInstallError as e:
                errors.append(str(e))
                continue
            if self._compose_available():
                return
            errors.append(f"{pkg} installed but 'docker compose version' still fails")
        raise DependencyInstallError("Could not install docker compose v2:\n" + "\n".join(errors))

    def _prepare_webroot(self):
        challenge_dir = self.acme_webroot / ".well-known" / "acme-challenge"
        try:
            challenge_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ChallengePreparationError(f"Failed to create {challenge_dir}: {e}")
        self._run_checked(
            ["chown", "-R", f"{self.NGINX_USER}:{self.NGINX_USER}", str(self.acme_webroot)],
            ChallengePreparationError,
        )

    def prepare_challenge(self):
        """Write and load the HTTP-only vhost that serves ACME challenges"""
        print(f"Preparing ACME challenge vhost for {self.request.domain}...")
        self._prepare_webroot()
        try:
            self._write_atomic(self.vhost_path, self.render_bootstrap_vhost())
            self._enable_site()
        except OSError as e:
            raise ChallengePreparationError(f"Failed to write bootstrap vhost {self.vhost_path}: {e}")
        self._reload_nginx(ChallengePreparationError)
        print("  Bootstrap vhost active")

    def obtain_certificate(self):
        """Request the certificate and verify the bundle landed on disk"""
        request = self.request
        bundle = self.certificate_bundle()
        cmd = self.build_certbot_command()

        print(f"  Requesting certificate for {request.domain} ({request.acme_mode})...")
        if request.acme_mode == "standalone":
            # certbot binds :80 itself; nginx comes back up whatever happens
            self._run(["systemctl", "stop", "nginx"])
            try:
                code, stdout, stderr = self._run(cmd, timeout=300)
            finally:
                start_code, _, start_err = self._run(["systemctl", "start", "nginx"])
                if start_code != 0:
                    print(f"  Warning: failed to restart nginx: {start_err.strip()}", file=sys.stderr)
        else:
            code, stdout, stderr = self._run(cmd, timeout=300)

        if code != 0:
            raise CertificateAcquisitionError(
                f"certbot failed ({code}): {' '.join(cmd)}\n{(stderr or stdout).strip()}\n"
                f"Check DNS (A/AAAA for {request.domain} must point to this server) "
                f"and that port 80 is reachable"
            )

        missing = bundle.missing()
        if missing:
            raise CertificateAcquisitionError(
                "certbot reported success but certificate files are missing: "
                + ", ".join(str(p) for p in missing)
            )
        print("  Certificate obtained successfully")

    def ensure_certificate(self):
        """Reuse an existing bundle, otherwise prepare the challenge and request one"""
        bundle = self.certificate_bundle()
        if not bundle.exists():
            self.prepare_challenge()
            self.obtain_certificate()
            return

        if not self.request.force_renew:
            print(f"  Existing certificate found at {bundle.fullchain.parent}, skipping issuance")
            return

        # Renewal keeps the TLS vhost live; it already serves the challenge path
        print(f"  Renewing existing certificate at {bundle.fullchain.parent}")
        if self.request.acme_mode == "webroot":
            self._prepare_webroot()
            self.write_tls_vhost()
        self.obtain_certificate()

    def write_tls_vhost(self):
        """Replace the vhost with the TLS proxy config, rolling back if nginx rejects it"""
        request = self.request
        print(f"Writing NGINX vhost for {request.domain} (TLS on {request.tls_port})...")

        bundle = self.certificate_bundle()
        if not bundle.exists():
            raise VhostWriteError(
                "Certificate files missing: " + ", ".join(str(p) for p in bundle.missing())
            )

        previous = None
        try:
            if self.vhost_path.is_file():
                previous = self.vhost_path.read_text(encoding='utf-8')
            self._write_atomic(self.vhost_path, self.render_tls_vhost())
            self._enable_site()
        except OSError as e:
            raise VhostWriteError(f"Failed to write {self.vhost_path}: {e}")

        code, stdout, stderr = self._run(["nginx", "-t"])
        if code != 0:
            self._rollback_vhost(previous)
            raise VhostWriteError(f"nginx -t rejected {self.vhost_path}:\n{(stderr or stdout).strip()}")

        if self._nginx_is_active():
            self._run_checked(["systemctl", "reload", "nginx"], VhostWriteError)
        else:
            self._run_checked(["systemctl", "start", "nginx"], VhostWriteError)
        print("  NGINX vhost applied")

    def _rollback_vhost(self, previous: Optional[str]):
        """Put back the vhost nginx accepted before, or drop the rejected one"""
        try:
            if previous is not None:
                self._write_atomic(self.vhost_path, previous)
                print("  Restored previous vhost", file=sys.stderr)
            else:
                if self.enabled_path.is_symlink():
                    self.enabled_path.unlink()
                if self.vhost_path.exists():
                    self.vhost_path.unlink()
                print("  Removed rejected vhost", file=sys.stderr)
        except OSError as e:
            raise VhostWriteError(f"nginx rejected {self.vhost_path} and rollback failed: {e}")

    def prepare_workdir(self):
        workdir = self.request.workdir
        try:
            (workdir / "db").mkdir(parents=True, exist_ok=True)
            (workdir / "cert").mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ManifestOrLaunchError(f"Failed to create {workdir}: {e}")

    def write_compose(self) -> Path:
        """Write docker-compose.yml into the working directory"""
        print(f"Writing {self.compose_path}...")
        self.prepare_workdir()
        try:
            self._write_atomic(self.compose_path, self.render_compose())
        except OSError as e:
            raise ManifestOrLaunchError(f"Failed to write {self.compose_path}: {e}")
        return self.compose_path

    def launch_stack(self):
        """Pull the image and (re)create the container"""
        print("Launching 3x-ui container...")
        workdir = self.request.workdir
        self._run_checked(["docker", "compose", "pull"], ManifestOrLaunchError, timeout=900, cwd=workdir)
        self._run_checked(["docker", "compose", "up", "-d"], ManifestOrLaunchError, timeout=300, cwd=workdir)
        print("  Container started")

    def print_summary(self):
        """Print deployment summary"""
        request = self.request
        print("\n" + "=" * 50)
        print("Deployment Complete!")
        print("=" * 50)
        print(f"Domain: {request.domain}")
        print("NGINX listens on:")
        print("  - HTTP 80 -> redirect to HTTPS")
        print(f"  - HTTPS {request.tls_port} -> proxy to 3x-ui (HTTP {request.panel_port})")
        print(f"\n3x-ui runs with 'network_mode: host'; its panel listens on port {request.panel_port} (HTTP).")
        print(f"TLS is terminated by NGINX on port {request.tls_port}.")
        print(f"\nCompose Configuration: {self.compose_path}")
        print("\nUseful Commands:")
        print(f"  cd {request.workdir} && docker compose logs|restart|down|up -d")
        print(f"\nCheck access at: https://{request.domain}:{request.tls_port}/")

    def deploy(self) -> bool:
        """Execute full deployment"""
        request = self.request
        self._require_root()

        print("\n" + "=" * 50)
        print("3x-ui NGINX/TLS Deployment")
        print("=" * 50)
        print(f"Domain: {request.domain}")
        print(f"TLS port: {request.tls_port}, panel port: {request.panel_port}")
        print(f"ACME mode: {request.acme_mode}{' (staging)' if request.staging else ''}")

        total = self.TOTAL_STEPS

        self._print_step(1, total, "Installing Dependencies")
        self.install_dependencies()

        self._print_step(2, total, "Obtaining Certificate")
        self.ensure_certificate()

        self._print_step(3, total, "Writing TLS Vhost")
        self.write_tls_vhost()

        self._print_step(4, total, "Writing Compose Manifest")
        self.write_compose()

        self._print_step(5, total, "Launching Stack")
        self.launch_stack()

        self._print_step(6, total, "Verifying Deployment")
        self.verify_deployment()

        self._print_step(7, total, "Summary")
        self.print_summary()
        return True

    def verify_deployment(self) -> bool:
        """Report container state; informational only"""
        code, stdout, _ = self._run(["docker", "compose", "ps", "--format", "json"], cwd=self.request.workdir)
        if code == 0 and stdout.strip() not in ("", "[]"):
            print("  3x-ui container running")
            return True
        print("  3x-ui container not running properly, check 'docker compose logs'")
        return False


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        request = parse_args(argv)
        XuiDeployer(request).deploy()
    except DeployError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted, host may be partially configured", file=sys.stderr)
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
