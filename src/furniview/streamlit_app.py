import os
import sys
import time
import io
import requests
import streamlit as st

API_BASE = os.getenv("FURNIVIEW_API_BASE", os.getenv("API_BASE", "http://localhost:3001")).rstrip("/")
MODEL_TYPES = ["obj", "fbx", "stl", "glb", "gltf"]
TRANSIENT_STATUS = {404, 409, 423, 429}


def _reset_state():
    for key in [
        "furniture_id",
        "status",
        "record",
        "error",
    ]:
        if key in st.session_state:
            del st.session_state[key]
    # Bump the uploader key to clear any previously uploaded file widget state
    if "upload_key" in st.session_state:
        st.session_state["upload_key"] += 1
    else:
        st.session_state["upload_key"] = 1


def _auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {st.session_state['token']}"}


def _login(email: str, password: str) -> str | None:
    try:
        resp = requests.post(f"{API_BASE}/api/auth/login", json={"email": email, "password": password}, timeout=30)
    except requests.RequestException as e:
        st.session_state["error"] = f"Failed to connect to API: {e}"
        return None
    if resp.status_code != 200:
        st.session_state["error"] = f"Login failed: {resp.status_code} {resp.text}"
        return None
    session = resp.json().get("session") or {}
    return session.get("access_token")


def _get_with_retry(path: str, *, label: str) -> object | None:
    # Retry transient errors and 5xx for a short window
    max_attempts = 5
    backoff = 0.5
    last_text = ""
    for attempt in range(1, max_attempts + 1):
        try:
            resp = requests.get(f"{API_BASE}{path}", headers=_auth_headers(), timeout=30)
        except requests.RequestException as e:
            last_text = str(e)
            if attempt < max_attempts:
                time.sleep(backoff)
                backoff *= 1.5
                continue
            st.session_state["error"] = f"{label} failed: {e}"
            return None
        last_text = resp.text
        if resp.status_code == 200:
            return resp.json()
        if resp.status_code in TRANSIENT_STATUS or 500 <= resp.status_code < 600:
            if attempt < max_attempts:
                time.sleep(backoff)
                backoff *= 1.5
                continue
        st.session_state["error"] = f"{label} error: {resp.status_code} {last_text}"
        return None
    st.session_state["error"] = f"{label} error after retries: {last_text}"
    return None


def _upload(uploaded_file: io.BytesIO, company_id: str, name: str, description: str) -> dict[str, object] | None:
    try:
        files = {"furnitureFile": (uploaded_file.name, uploaded_file.getvalue(), uploaded_file.type or "application/octet-stream")}
        data = {"company_id": company_id, "name": name, "description": description}
        resp = requests.post(f"{API_BASE}/api/upload", files=files, data=data, headers=_auth_headers(), timeout=120)
    except requests.RequestException as e:
        st.session_state["error"] = f"Failed to connect to API: {e}"
        return None
    if resp.status_code != 201:
        st.session_state["error"] = f"Upload failed: {resp.status_code} {resp.text}"
        return None
    return resp.json().get("furnitureRecord")


def _poll_record(company_id: str, furniture_id: str) -> dict[str, object] | None:
    rows = _get_with_retry(f"/api/companies/{company_id}/furniture", label="Status check")
    if rows is None:
        return None
    return next((r for r in rows if r.get("id") == furniture_id), None)  # type: ignore[union-attr]


def main() -> None:
    st.set_page_config(page_title="Furniview Console", page_icon="🪑", layout="centered")
    st.title("🪑 Furniview Console")
    st.caption(f"API base: {API_BASE}")

    if "token" not in st.session_state:
        with st.form("login"):
            email = st.text_input("Email")
            password = st.text_input("Password", type="password")
            if st.form_submit_button("Log in", type="primary"):
                token = _login(email, password)
                if token:
                    st.session_state["token"] = token
                    st.rerun()
        if err := st.session_state.pop("error", None):
            st.error(err)
        return

    if st.button("Restart", type="secondary"):
        _reset_state()
        st.rerun()

    memberships = _get_with_retry("/api/companies", label="Company lookup") or []
    companies = {m["company_id"]: (m.get("company") or {}).get("name", m["company_id"]) for m in memberships}  # type: ignore[union-attr]
    if not companies:
        st.info("You are not a member of any company yet.")
        return
    company_id = st.selectbox("Company", list(companies), format_func=lambda cid: companies[cid])

    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    uploaded = st.file_uploader(
        "Upload a 3D model (OBJ, FBX, STL, GLB, GLTF)",
        type=MODEL_TYPES,  # type: ignore[arg-type]
        key=f"uploader-{st.session_state['upload_key']}",
    )
    name = st.text_input("Model name")
    description = st.text_area("Description")

    if uploaded and "furniture_id" not in st.session_state and st.button("Upload", type="primary"):
        with st.spinner("Uploading..."):
            record = _upload(uploaded, company_id, name, description)
        if record:
            st.session_state["furniture_id"] = record["id"]
            st.session_state["status"] = record.get("status", "uploaded")
            st.toast("Upload accepted", icon="✅")
        else:
            st.error(st.session_state.get("error", "Unknown error"))

    if "furniture_id" in st.session_state:
        furniture_id = st.session_state["furniture_id"]
        with st.status("Tracking conversion...", expanded=True) as status_box:
            text_slot = st.empty()
            while True:
                record = _poll_record(company_id, furniture_id)
                if not record:
                    st.error(st.session_state.get("error", "Record not found"))
                    break
                st.session_state["status"] = str(record.get("status", "unknown"))
                st.session_state["record"] = record
                text_slot.write(f"Status: {st.session_state['status']}")
                if st.session_state["status"] == "converted":
                    status_box.update(label="Conversion complete", state="complete")
                    break
                if st.session_state["status"] in {"conversion_failed", "skipped_conversion"}:
                    status_box.update(label=f"Finished: {st.session_state['status']}", state="error")
                    break
                time.sleep(1.5)

    record = st.session_state.get("record")
    if record and record.get("gltf_url"):
        st.success("GLTF ready")
        st.code(record["gltf_url"])

    if err := st.session_state.get("error"):
        st.error(err)


def run() -> None:
    """Launch the console with ``streamlit run``."""
    from streamlit.web import cli as stcli

    sys.argv = ["streamlit", "run", __file__]
    sys.exit(stcli.main())


if __name__ == "__main__":
    main()
