import courier
import trio


http = courier.request.defaults(headers={"Accept": "application/json"})


async def main():
    await top_level_request()
    await stream_bytes()
    await events()
    await post_json()
    await simple()


async def top_level_request():
    resp = await courier.request("https://www.example.com")
    print(resp.status_code, resp.headers, (await resp.text()))


async def stream_bytes():
    async with http("https://www.example.com") as resp:
        print(resp.status_code, resp.headers)
        async for chunk in resp.stream():
            print(chunk)


async def events():
    conn = courier.request("http://httpbin.org/redirect/2", max_redirects=5)
    conn.on("request", lambda req: print(">", req.method, req.url))
    conn.on("response", lambda resp: print("<", resp.status_code, resp.redirects))
    conn.on("error", lambda err: print("!", err))

    async with trio.open_nursery() as nursery:
        conn.start_soon(nursery)
    if conn.response is not None:
        await conn.response.close()


async def post_json():
    conn = http.post("https://httpbin.org/anything", body={"hello": "world"})
    print(await conn.body())


async def simple():
    data = await http.get("https://httpbin.org/get", simple=True, qs={"a": [1, 2]})
    print(data["url"])


trio.run(main)
