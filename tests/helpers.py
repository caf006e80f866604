from server.src.modules.workspace_auth import register_session


def doc_with_links(*page_ids: str) -> dict:
    return {
        "type": "doc",
        "content": [
            {
                "type": "paragraph",
                "content": [{"type": "pageLink", "attrs": {"pageId": pid}} for pid in page_ids],
            }
        ],
    }


def auth_headers(token: str, owner_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {register_session(owner_id, token)}"}


async def create_folder(client, name: str, parent_id: str | None = None, **kwargs):
    resp = await client.post("/api/folders", json={"name": name, "parent_id": parent_id}, **kwargs)
    resp.raise_for_status()
    return resp.json()


async def create_page(client, title: str, content=None, folder_id: str | None = None, **kwargs):
    payload = {"title": title, "content": content, "folder_id": folder_id}
    resp = await client.post("/api/pages", json=payload, **kwargs)
    resp.raise_for_status()
    return resp.json()
