import ssl

import pytest
import courier
from courier.models import TLSConfig, create_ssl_context


@pytest.mark.trio
async def test_https_request(https_server, ca):
    resp = await courier.request(
        https_server.url("/echo?a=b"), tls={"ca_certs": ca.cert_pem.bytes()}
    )

    assert resp.status_code == 200
    data = await resp.json()
    assert data["target"] == "/echo?a=b"
    assert data["headers"]["host"] == f"127.0.0.1:{https_server.port}"


@pytest.mark.trio
async def test_https_ca_certs_file(https_server, ca, tmp_path):
    ca_file = tmp_path / "ca.pem"
    ca.cert_pem.write_to_path(str(ca_file))

    resp = await courier.request(https_server.url(), tls={"ca_certs": str(ca_file)})
    assert resp.status_code == 200
    await resp.close()


@pytest.mark.trio
async def test_https_untrusted_certificate(https_server):
    errors = []
    conn = courier.request(https_server.url())
    conn.on("error", errors.append)

    with pytest.raises(courier.CertificateError) as e:
        await conn
    assert errors == [e.value]
    assert https_server.requests == []


@pytest.mark.trio
async def test_https_server_hostname_mismatch(https_server, ca):
    tls = {"ca_certs": ca.cert_pem.bytes(), "server_hostname": "wrong.example"}
    with pytest.raises(courier.CertificateHostnameMismatch):
        await courier.request(https_server.url(), tls=tls)


@pytest.mark.trio
async def test_https_without_verification(https_server):
    resp = await courier.request(https_server.url(), tls={"verify": False})
    assert resp.status_code == 200
    await resp.close()


@pytest.mark.trio
async def test_https_connections_are_reused(https_server, ca):
    pool = courier.ConnectionPool()
    tls = {"ca_certs": ca.cert_pem.bytes()}

    for _ in range(2):
        resp = await courier.request(https_server.url(), tls=tls, agent=pool)
        await resp.data()

    assert https_server.connections == 1
    assert pool.idle_count() == 1
    pool.close()
    assert pool.idle_count() == 0


@pytest.mark.trio
async def test_https_through_tunnel(https_server, proxy, ca):
    resp = await courier.request(
        https_server.url("/echo"),
        proxy=proxy.url(),
        tls={"ca_certs": ca.cert_pem.bytes()},
    )

    assert resp.status_code == 200
    data = await resp.json()
    assert data["target"] == "/echo"
    assert data["headers"]["host"] == f"127.0.0.1:{https_server.port}"

    assert [r.method for r in proxy.requests] == ["CONNECT"]
    assert proxy.requests[0].target == f"127.0.0.1:{https_server.port}"


@pytest.mark.trio
async def test_https_through_tunnel_verifies_target(https_server, proxy):
    with pytest.raises(courier.CertificateError):
        await courier.request(https_server.url(), proxy=proxy.url())

    assert proxy.requests[0].method == "CONNECT"
    assert https_server.requests == []


@pytest.mark.trio
async def test_https_post_through_tunnel(https_server, proxy, ca):
    conn = courier.request.post(
        https_server.url("/echo"),
        proxy=proxy.url(),
        tls={"ca_certs": ca.cert_pem.bytes()},
        body="tunnelled",
    )
    data = await (await conn).json()

    assert data["body"] == "tunnelled"
    assert data["headers"]["content-length"] == "9"


def test_ssl_context_from_ca_bytes(ca):
    ctx = create_ssl_context(TLSConfig(ca_certs=ca.cert_pem.bytes()))

    assert ctx.verify_mode == ssl.CERT_REQUIRED
    assert ctx.check_hostname
    assert ctx.minimum_version == ssl.TLSVersion.TLSv1_2
    assert len(ctx.get_ca_certs()) == 1


def test_ssl_context_without_verification():
    ctx = create_ssl_context(TLSConfig(verify=False))

    assert ctx.verify_mode == ssl.CERT_NONE
    assert not ctx.check_hostname


def test_prebuilt_ssl_context_is_used_as_is():
    ctx = ssl.create_default_context()
    assert create_ssl_context(TLSConfig(ssl_context=ctx)) is ctx
