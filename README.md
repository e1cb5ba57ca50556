# planetkit

Tools and helpers for preparing and running a containerised Kubernetes node.

## Installation

```
pip install .
pip install ".[test]"   # with the test dependencies
```

## Commands

### create-tarball

Packs a prepared root filesystem directory into a gzip-compressed PAX tar
archive. Every entry is owned by the service user (uid/gid 980665), except
that `rootfs/etc` is owned by root with the service group and gets group
read/write, and `rootfs/sbin/mount.*` is owned by root:root. Temporary files,
man pages, documentation, apt lists, log contents, caches and locales are left
out. Labels in `orbit.manifest.json` whose value names a `REPLACE_*`
environment variable are replaced by that variable's value.

```
create-tarball <rootfs-dir> <output-tarball>
```

### docker-import

Loads every image tarball (as written by `docker save -o`) found directly in a
directory, tags it for a private registry and pushes it there, using the
`docker` command. Each import is attempted up to six times, five seconds
apart.

```
docker-import --dir /path/to/images --registry-addr registry.local:5000
```

## Library

```python
import io
from planetkit.resolvconf import read_dns_config

conf = read_dns_config(io.StringIO("nameserver 8.8.8.8\n"), False)
print(conf.servers)   # ['8.8.8.8']
print(str(conf))      # resolv.conf text
```

Modules:

- `planetkit.resolvconf` – `DNSConfig` and `read_dns_config`: parse and
  serialise resolv.conf content (at most three nameservers; local resolvers
  as a fallback unless disabled).
- `planetkit.retry` – `retry`, `retry_with_interval`, `ExponentialBackOff`,
  `new_unlimited_exponential_backoff`, `PermanentError`, `ContinueRetry`.
  Retries can be cancelled through a `threading.Event`.
- `planetkit.files` – `write_hosts`, `HostEntry`, `write_drop_in`,
  `drop_in_dir`, `safe_write_file`, `exit_status_from_error`, `to_json`
  (YAML to JSON), `on_gce_vm`.
- `planetkit.flags` – command-line value parsers `HostPort`,
  `parse_key_val`, `parse_cidr`, `parse_list`, `parse_bool_flag`, and the
  formatters `to_addr_list`, `to_etcd_peer_list`, `to_etcd_gateway_list`,
  `to_key_value_list`.
- `planetkit.config` – `Config`, `Mount`, `DNS`, `BadParameterError`,
  `verify_pod_subnet_size`, `new_kube_config`.
- `planetkit.dns_service` – `new_dns_service` builds a cluster DNS service
  object as a plain dictionary; `get_dns_service` picks the first service whose
  cluster IP lies in the service CIDR (raising `DNSServiceNotFoundError`
  otherwise); `is_ip_already_allocated_error` and `status_has_cause` inspect
  API status dictionaries.
- `planetkit.tarball` – `Pattern`, `PATTERNS`, `rewrite_manifest`,
  `create_tarball` behind the `create-tarball` command.
- `planetkit.docker_import` – `image_url`, `docker_command`,
  `import_image_from_tarball`, `bulk_import` behind the `docker-import`
  command.

## What it does not do

The package does not start or enter a node container, create device nodes,
run a monitoring agent or take part in leader election. It does not talk to
the Kubernetes API or to etcd: DNS service objects and API statuses are built
and inspected as plain dictionaries, and sending them is up to the caller.

## Tests

```
pytest
```