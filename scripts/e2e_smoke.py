#!/usr/bin/env python3
"""
端到端冒烟测试: 注册 -> 建书 -> 查询配额 -> 流式生成一章

用法: python scripts/e2e_smoke.py [BASE_URL]
生成步骤需要服务端配置了默认 AI Key 或用户自己的 API 配置。
"""
import json
import sys
import uuid

import httpx


BASE_URL = sys.argv[1] if len(sys.argv) > 1 else "http://127.0.0.1:8000"


def main() -> int:
    suffix = uuid.uuid4().hex[:8]
    account = {"email": f"smoke_{suffix}@example.com", "username": f"smoke_{suffix}", "password": "Smoke1234"}
    with httpx.Client(base_url=BASE_URL, timeout=10) as client:
        r = client.get("/health")
        print("health:", r.status_code, r.text)

        r = client.post("/api/auth/register", json=account)
        print("register:", r.status_code, r.text)
        if r.status_code != 201:
            return 1

        r = client.post("/api/novels", json={"title": "冒烟测试", "genre": "玄幻", "synopsis": "少年踏上修行之路"})
        print("create_novel:", r.status_code, r.text)
        novel_id = r.json()["novel"]["id"]

        r = client.get("/api/user/quota")
        print("quota:", r.status_code, r.text)

        body = {"prompt": "写一个简短的开篇，三百字以内", "maxTokens": 512}
        with client.stream("POST", f"/api/novels/{novel_id}/generate", json=body, timeout=None) as resp:
            print("generate:", resp.status_code)
            if resp.status_code != 200:
                print(resp.read().decode("utf-8", errors="replace"))
                return 1
            for line in resp.iter_lines():
                if not line:
                    continue
                event = json.loads(line)
                if event["type"] == "chunk":
                    print(event["content"], end="", flush=True)
                else:
                    print("\n", event)

        r = client.get(f"/api/novels/{novel_id}/chapters")
        print("chapters:", r.status_code, len(r.json().get("chapters", [])))
    return 0


if __name__ == "__main__":
    sys.exit(main())
