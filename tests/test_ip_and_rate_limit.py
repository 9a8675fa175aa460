from starlette.requests import Request

from evalify.utils.ip import get_client_ip, is_client_in_lab_subnets, is_ip_in_subnet, is_valid_subnet
from evalify.utils.rate_limit import InMemoryRateLimiter


def _request(headers=None, client=("10.0.0.9", 5000)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def test_ip_in_subnet():
    assert is_ip_in_subnet("192.168.1.42", "192.168.1.0/24")
    assert not is_ip_in_subnet("192.168.2.1", "192.168.1.0/24")
    # host bits in the network address are tolerated
    assert is_ip_in_subnet("10.1.2.3", "10.1.2.77/16")


def test_ip_in_subnet_bad_input_is_false():
    assert not is_ip_in_subnet("not-an-ip", "192.168.1.0/24")
    assert not is_ip_in_subnet("192.168.1.1", "garbage")
    assert not is_ip_in_subnet(None, "192.168.1.0/24")
    assert not is_ip_in_subnet("::1", "192.168.1.0/24")


def test_valid_subnet_format():
    assert is_valid_subnet("10.0.0.0/8")
    assert not is_valid_subnet("10.0.0.0")
    assert not is_valid_subnet("300.1.1.1/24")
    assert not is_valid_subnet("10.0.0.0/99")


def test_client_in_lab_subnets():
    assert is_client_in_lab_subnets("172.16.5.5", ["10.0.0.0/8", "172.16.0.0/16"])
    assert not is_client_in_lab_subnets("8.8.8.8", ["10.0.0.0/8"])
    assert not is_client_in_lab_subnets(None, ["10.0.0.0/8"])
    assert not is_client_in_lab_subnets("10.0.0.1", [])


def test_client_ip_prefers_forwarded_header():
    req = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "198.51.100.1"})
    assert get_client_ip(req) == "203.0.113.7"


def test_client_ip_header_order():
    req = _request({"X-Real-IP": "198.51.100.1", "CF-Connecting-IP": "192.0.2.5"})
    assert get_client_ip(req) == "198.51.100.1"
    req = _request({"CF-Connecting-IP": "192.0.2.5"})
    assert get_client_ip(req) == "192.0.2.5"


def test_client_ip_ignores_headers_when_untrusted():
    req = _request({"X-Forwarded-For": "203.0.113.7"})
    assert get_client_ip(req, trust_proxy_headers=False) == "10.0.0.9"


def test_client_ip_unknown():
    assert get_client_ip(_request(client=None)) is None


def test_rate_limiter_blocks_after_limit():
    limiter = InMemoryRateLimiter(window_seconds=60)
    assert limiter.allow("k", 2) == (True, 0)
    assert limiter.allow("k", 2) == (True, 0)
    allowed, retry_after = limiter.allow("k", 2)
    assert not allowed
    assert 1 <= retry_after <= 60
    # other keys are independent
    assert limiter.allow("other", 2)[0]


def test_rate_limiter_window_expires(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr("evalify.utils.rate_limit.time.monotonic", lambda: now[0])
    limiter = InMemoryRateLimiter(window_seconds=10)
    assert limiter.allow("k", 1)[0]
    assert not limiter.allow("k", 1)[0]
    now[0] += 11
    assert limiter.allow("k", 1)[0]


def test_rate_limiter_reset():
    limiter = InMemoryRateLimiter()
    limiter.allow("k", 1)
    limiter.reset()
    assert limiter.allow("k", 1)[0]
