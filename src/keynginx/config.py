from dataclasses import dataclass

@dataclass(frozen=True)
class Config:
  bin_name = 'keynginx'
  version = '1.0.0'

  container_prefix = 'keynginx'

  labels = {
    'owner_key':   'created-by',       # Ownership marker, checked by is_keynginx_container()
    'owner_value': 'keynginx',         #
    'domain':      'keynginx.domain',  #
    'version':     'keynginx.version', #
  }

  config_files = ('keynginx.yaml', 'keynginx.yml')

  project_files = {
    'private_key':  'ssl/private.key',
    'certificate':  'ssl/certificate.crt',
    'nginx_conf':   'nginx.conf',
    'compose_file': 'docker-compose.yml',
    'logs_dir':     'logs',
  }

  mount_targets = {
    'nginx_conf': '/etc/nginx/nginx.conf',
    'ssl_dir':    '/etc/nginx/ssl',
    'logs_dir':   '/var/log/nginx',
  }

  key_sizes = (2048, 3072, 4096)
  max_validity_days = 3650

  stop_timeout = 30
  quick_stop_timeout = 1
  poll_interval = 1.0
  ready_timeout = 30.0
  log_tail = '100'

config = Config()
