"""Jinja2 templates for the materialized configuration files."""

PHP_POOL_TEMPLATE = """\
; Generated by zminit from the container environment. Do not edit.
[www]
pm.max_children = {{ php_max_children }}
pm.start_servers = {{ php_start_servers }}
pm.min_spare_servers = {{ php_min_spare_servers }}
pm.max_spare_servers = {{ php_max_spare_servers }}
php_admin_value[memory_limit] = {{ php_memory_limit }}
php_admin_value[max_execution_time] = {{ php_max_execution_time }}
php_admin_value[max_input_vars] = {{ php_max_input_variables }}
php_admin_value[max_input_time] = {{ php_max_input_time }}
php_admin_value[date.timezone] = {{ timezone }}
"""

FASTCGI_BUFFERS_TEMPLATE = """\
# Generated by zminit from the container environment. Do not edit.
fastcgi_buffers {{ fastcgi_buffers }};
"""

ZM_DB_TEMPLATE = """\
# Generated by zminit from the container environment. Do not edit.
ZM_DB_HOST={{ mysql_host }}
ZM_DB_PORT={{ mysql_port }}
ZM_DB_NAME={{ db_name }}
ZM_DB_USER={{ db_user }}
ZM_DB_PASS={{ db_password }}
"""

TIMEZONE_TEMPLATE = """\
{{ timezone }}
"""
