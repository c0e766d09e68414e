# miaospeed

Building blocks for a backend that tests proxy nodes. It measures HTTP and
RTT latency, download throughput and the NAT type behind a proxy (STUN,
RFC 5780), holds GeoIP records for inbound and outbound addresses, signs
and verifies test requests, and schedules test jobs across a weighted,
concurrency-limited task poll.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Command line

Print the version and exit:

```
miaospeed --version
```

Running `miaospeed` with no subcommand prints the usage and the list of
subcommands; the only subcommand is `misc`.

Download the MaxMind GeoLite2 databases (ASN and City) with a license key.
Every `.mmdb` file found in the downloaded archives is written to the
current directory under its base name:

```
miaospeed misc --maxmind-update-license placeholder
```

Add `--verbose` to `misc` to print the system log as well. Without any
option, `misc` prints a hint and exits.

## Library use

Request models and their defaults live in `miaospeed.models`:
`SlaveRequest` (with `to_dict`, `from_dict` and `clone`),
`SlaveRequestConfigs` (`check()` fills in defaults and replaces
out-of-range values in place, `merge()` overlays the non-empty settings of
another configuration on a copy), `SlaveResponse`, and the `MatrixType`,
`MacroType`, `ProxyType`, `VendorType` and `RequestOptionsNetwork`
enumerations. `Vendor`, `Macro` and `Matrix` are the abstract base classes
for connection sources, measurement jobs and extracted attributes.

Signing lives in `miaospeed.signing`: `sign_request` computes the
challenge for a request (the request's own challenge is not signed), and
`GlobalConfig` offers `sign_request`, `verify_request` and `in_whitelist`
(an empty whitelist admits everyone). `to_json` serialises compactly and
escapes `<`, `>` and `&`.

Latency averaging discards samples 300 ms or more away from the median:

```python
from miaospeed.ping import compute_avg_of_ping

compute_avg_of_ping([10, 20, 30])  # 19
```

Other modules:

- `miaospeed.ping` — `ping` probes a URL through a vendor (raw HTTP for
  `http:`, TLS 1.3 for `https:`); the `Ping` macro stores `rtt` and
  `request`.
- `miaospeed.nat` — a small STUN client (`StunMessage`), `mapping_tests`,
  `filtering_tests`, `detect_nat_type`, `nat_type_to_string` and the `Udp`
  macro.
- `miaospeed.macros` — the `Speed` macro (downloads through a vendor and
  samples bytes once per second; `DYNAMIC:` download URLs fall back to a
  fixed test file), `WriteCounter`, `InvalidMacro`, `find` and
  `find_batch`.
- `miaospeed.matrices` — the matrices (`HTTPPing`, `RTTPing`, `UDPType`,
  `AverageSpeed`, `MaxSpeed`, `PerSecondSpeed`, `InboundGeoIP`,
  `OutboundGeoIP`, `ScriptTest`, `InvalidMatrix`), `find`, `find_batch`,
  `find_batch_from_entry` and `extract_macros_from_matrices`.
- `miaospeed.geoip` — `IPStacks`, `GeoInfo` and `MultiStacks`.
- `miaospeed.dns` — `resolve_addresses` and `lookup_ipv46`, cached
  resolution split into IPv4 and IPv6 addresses, optionally through custom
  DNS servers given as `host:port`.
- `miaospeed.archive` — `find_and_extract` pulls matching files out of a
  gzipped tarball; `download` and `download_bytes` fetch a URL.
- `miaospeed.taskpoll` — `TaskPollController`, `TaskPollItem`,
  `TaskPollExitCode` and `make_stop_event`.
- `miaospeed.cache` — `ObliviousMap` over a `MemoryDriver`, an in-memory
  store whose keys expire.
- `miaospeed.structs` — thread-safe `AsyncMap` and `AsyncArr`, plus
  `with_in`, `with_in_default`, `uniq` and `safe_index`.
- `miaospeed.logger` — levelled logging with `log`, `info`, `warn`,
  `error`, `wrap_error` and `set_verbose_level`.
- `miaospeed.preconfigs` — default URLs, limits, `VERSION` and
  `EmbedConfig`.

## What it does not do

- There is no server: no `server` subcommand and nothing that accepts test
  requests over a network connection. The models, signing and task poll
  are provided for one to be built on.
- There is no script engine. The `SCRIPT` and `GEO` macro types have no
  implementation: `macros.find` returns an `InvalidMacro` for them, and
  `extract_macros_from_matrices` leaves them out, so script tests and GeoIP
  lookups are never run. `ScriptTest`, `InboundGeoIP` and `OutboundGeoIP`
  keep their empty defaults unless given a macro carrying results.
- The MaxMind databases can be downloaded but are not read.
- No concrete `Vendor` is included; direct or proxied connections must be
  supplied by a `Vendor` subclass.