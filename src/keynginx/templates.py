from datetime import datetime

from keynginx.config import config
from keynginx.project import ProjectConfig, SecuritySection

PROXY_HEADERS = """            proxy_set_header Host $host;
            proxy_set_header X-Real-IP $remote_addr;
            proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
            proxy_set_header X-Forwarded-Proto $scheme;
            proxy_set_header X-Forwarded-Host $server_name;
            proxy_hide_header X-Powered-By;
            proxy_hide_header Server;"""


def security_headers(security: SecuritySection) -> dict[str, str]:
  """Response headers for the configured security level"""
  headers = {"X-Server-Created-By": config.bin_name}
  if not security.enabled:
    return headers

  match security.level:
    case "strict":
      headers.update({
        "X-Frame-Options": "DENY",
        "X-XSS-Protection": "1; mode=block",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "no-referrer",
        "X-Download-Options": "noopen",
        "X-Permitted-Cross-Domain-Policies": "none",
      })
      if security.enable_hsts:
        headers["Strict-Transport-Security"] = f"max-age={security.hsts_max_age}; includeSubDomains; preload"
    case "balanced":
      headers.update({
        "X-Frame-Options": "SAMEORIGIN",
        "X-XSS-Protection": "1; mode=block",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "X-Download-Options": "noopen",
      })
      if security.enable_hsts:
        headers["Strict-Transport-Security"] = f"max-age={security.hsts_max_age}; includeSubDomains"
    case "permissive":
      headers.update({
        "X-Frame-Options": "SAMEORIGIN",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "origin-when-cross-origin",
      })

  if security.level != "permissive" and security.enable_csp and security.csp_policy:
    headers["Content-Security-Policy"] = security.csp_policy

  headers.update(security.custom_headers)
  return headers


def _add_headers(headers: dict[str, str]) -> str:
  return "\n".join(f'        add_header {k} "{v}" always;' for k, v in headers.items())


def _locations(project: ProjectConfig) -> str:
  if not project.nginx.services:
    return """        location / {
            root /usr/share/nginx/html;
            index index.html index.htm;
        }"""
  blocks = []
  for service in project.nginx.services:
    upstream = service.proxy_pass or f"http://{service.name}:{service.port}"
    blocks.append(f"""        # Service: {service.name}
        location {service.path} {{
            proxy_pass {upstream};
{PROXY_HEADERS}
        }}""")
  return "\n\n".join(blocks)


def render_nginx_conf(project: ProjectConfig) -> str:
  """nginx.conf served from inside the proxy container (listens on 80/443)"""
  nginx, security = project.nginx, project.security
  rate_limit = ""
  if security.rate_limit.enabled:
    rl = security.rate_limit
    rate_limit = (
      f"    limit_req_zone $binary_remote_addr zone=keynginx:10m rate={rl.requests_per_minute}r/m;\n"
      f"    limit_req zone=keynginx burst={rl.burst_size} nodelay;\n"
    )

  return f"""# KeyNginx Generated Configuration
# Domain: {project.domain}
# Security Level: {security.level}
# Generated: {datetime.now():%Y-%m-%d %H:%M:%S}

events {{
    worker_connections 1024;
    multi_accept on;
}}

http {{
    include       /etc/nginx/mime.types;
    default_type  application/octet-stream;

    log_format main '$remote_addr - $remote_user [$time_local] "$request" '
                   '$status $body_bytes_sent "$http_referer" '
                   '"$http_user_agent" "$http_x_forwarded_for"';

    access_log {config.mount_targets['logs_dir']}/access.log main;
    error_log {config.mount_targets['logs_dir']}/error.log warn;

    sendfile on;
    tcp_nopush on;
    tcp_nodelay on;
    keepalive_timeout 65;
    client_max_body_size 16M;
    server_tokens off;

    gzip on;
    gzip_vary on;
    gzip_comp_level 6;
    gzip_min_length 1024;
    gzip_proxied any;
    gzip_types text/plain text/css text/xml text/javascript application/javascript
               application/json application/xml application/rss+xml image/svg+xml;

{rate_limit}
    server {{
        listen 80;
        server_name {nginx.server_name};
        return 301 https://$host:{nginx.https_port}$request_uri;
    }}

    server {{
        listen 443 ssl;
        http2 on;
        server_name {nginx.server_name};

        ssl_certificate {config.mount_targets['ssl_dir']}/certificate.crt;
        ssl_certificate_key {config.mount_targets['ssl_dir']}/private.key;
        ssl_protocols TLSv1.2 TLSv1.3;
        ssl_ciphers ECDHE-RSA-AES256-GCM-SHA512:DHE-RSA-AES256-GCM-SHA512:ECDHE-RSA-AES256-GCM-SHA384;
        ssl_prefer_server_ciphers off;
        ssl_session_cache shared:SSL:10m;
        ssl_session_timeout 10m;

        # Security headers
{_add_headers(security_headers(security))}

        # Custom headers
{_add_headers(nginx.custom_headers)}

{_locations(project)}

        location /health {{
            access_log off;
            add_header Content-Type text/plain;
            return 200 "healthy\\n";
        }}

        location /.well-known/security.txt {{
            add_header Content-Type text/plain;
            return 200 "# KeyNginx Generated Security Policy\\nContact: mailto:admin@{nginx.server_name}\\n";
        }}
    }}
}}
"""


def render_compose(project: ProjectConfig) -> str:
  """docker-compose.yml equivalent of the container `keynginx up` creates"""
  docker, nginx = project.docker, project.nginx
  services = "".join(
    f"""
  # {s.name}:
  #   build: ./{s.name}
  #   ports:
  #     - "{s.port}:{s.port}"
  #   networks:
  #     - {docker.network_name}
"""
    for s in nginx.services
  )
  return f"""# KeyNginx Generated Docker Compose
# Domain: {project.domain}
# Generated: {datetime.now():%Y-%m-%d %H:%M:%S}
services:
  nginx:
    image: {docker.nginx_image}
    container_name: {project.container_name}
    ports:
      - "{nginx.https_port}:443"
      - "{nginx.http_port}:80"
    volumes:
      - ./{config.project_files['nginx_conf']}:{config.mount_targets['nginx_conf']}:ro
      - ./ssl:{config.mount_targets['ssl_dir']}:ro
      - ./{config.project_files['logs_dir']}:{config.mount_targets['logs_dir']}
    labels:
      {config.labels['owner_key']}: {config.labels['owner_value']}
      {config.labels['domain']}: "{project.domain}"
    restart: unless-stopped
    networks:
      - {docker.network_name}
{services}
networks:
  {docker.network_name}:
    driver: bridge
"""
