# streamlit_app.py
import streamlit as st
import os
import threading
import time
import queue
from client_app.client import Client
from common.config import ClientConfig
from common.protocol import HOST as DEFAULT_HOST, PORT as DEFAULT_PORT, ProtocolError

DOWNLOADS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'client_downloads')
MAX_CONCURRENT_DOWNLOADS = 5  # Limit simultaneous sessions opened by this page

st.set_page_config(page_title="File Transfer Client", layout="wide")

# --- Session State Initialization ---
if 'ui_client_instance' not in st.session_state:  # For LIST on the UI channel
    st.session_state.ui_client_instance = None
if 'server_files' not in st.session_state:
    st.session_state.server_files = []
if 'server_host' not in st.session_state:
    st.session_state.server_host = DEFAULT_HOST
if 'server_port' not in st.session_state:
    st.session_state.server_port = DEFAULT_PORT
if 'download_status' not in st.session_state:  # filename -> status dict
    st.session_state.download_status = {}
if 'log_messages' not in st.session_state:
    st.session_state.log_messages = []
if 'update_queue' not in st.session_state:
    st.session_state.update_queue = queue.Queue()
if 'active_download_threads' not in st.session_state:  # filename -> thread
    st.session_state.active_download_threads = {}


# --- Helper Functions ---
def add_log_to_queue(q, message_text):
    timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
    q.put({'type': 'log', 'message': f"[{timestamp}] {message_text}"})


def client_config(host, port):
    return ClientConfig(host=host, port=int(port), download_dir=DOWNLOADS_DIR)


def download_file_worker(host, port, filename_to_download, q):
    """Download ONE file on its own session; progress goes through the queue."""
    q.put({'type': 'download_init', 'filename': filename_to_download, 'message': 'Connecting...'})

    worker_client = Client(client_config(host, port))
    try:
        worker_client.connect()
    except OSError as e:
        q.put({'type': 'download_result', 'filename': filename_to_download, 'success': False,
               'message': f"Connection failed: {e}"})
        add_log_to_queue(q, f"DL Worker ({filename_to_download}): Connect failed: {e}")
        return

    def on_progress(filename, part, received, total, percent):
        q.put({'type': 'file_progress', 'filename': filename_to_download, 'progress': percent,
               'message': f"Part {part} ({received}/{total} bytes) - {percent}%"})

    try:
        [(success, result_msg)] = worker_client.request_download([filename_to_download], on_progress)
    except (OSError, ProtocolError) as e:
        success, result_msg = False, f"Transfer failed: {e}"
        worker_client.disconnect(send_quit=False)
    else:
        worker_client.disconnect(send_quit=True)

    q.put({'type': 'download_result', 'filename': filename_to_download, 'success': success, 'message': result_msg})
    add_log_to_queue(q, f"DL Worker ({filename_to_download}): {'Success' if success else 'Failed'} - {result_msg}")


def process_update_queue():
    processed = False
    while True:
        try:
            update = st.session_state.update_queue.get_nowait()
        except queue.Empty:
            break
        processed = True
        filename = update.get('filename')

        if update['type'] == 'log':
            if len(st.session_state.log_messages) > 20:
                st.session_state.log_messages.pop()
            st.session_state.log_messages.insert(0, update['message'])

        elif update['type'] == 'download_init':
            st.session_state.download_status[filename] = {
                'progress': 0, 'message': update['message'], 'completed': False, 'error': False
            }

        elif update['type'] == 'file_progress':
            status_entry = st.session_state.download_status.setdefault(
                filename, {'completed': False, 'error': False})
            status_entry['progress'] = update['progress']
            status_entry['message'] = update['message']

        elif update['type'] == 'download_result':
            status_entry = st.session_state.download_status.setdefault(filename, {})
            if update['success']:
                status_entry.update(completed=True, error=False, progress=100)
            else:
                status_entry.update(completed=False, error=True)
            status_entry['message'] = update['message']
            st.session_state.active_download_threads.pop(filename, None)
    return processed


# --- UI ---
st.title("File Transfer Client")
processed_updates = process_update_queue()

with st.sidebar:
    st.header("Connection")
    st.session_state.server_host = st.text_input("Server Host", value=st.session_state.server_host)
    st.session_state.server_port = st.number_input("Server Port", value=st.session_state.server_port, min_value=1,
                                                   max_value=65535, step=1)

    if st.session_state.ui_client_instance is None:
        if st.button("Connect to Server"):
            client = Client(client_config(st.session_state.server_host, st.session_state.server_port))
            try:
                msg = client.connect()
            except OSError as e:
                st.error(f"Error connecting to server: {e}")
                add_log_to_queue(st.session_state.update_queue, f"Connect failed: {e}")
            else:
                st.session_state.ui_client_instance = client
                add_log_to_queue(st.session_state.update_queue, msg)
                st.rerun()
    else:
        st.success(f"Connected to {st.session_state.server_host}:{st.session_state.server_port} (UI Channel)")
        if st.button("Disconnect UI Client"):
            msg = st.session_state.ui_client_instance.disconnect(send_quit=True)
            add_log_to_queue(st.session_state.update_queue, msg)
            st.session_state.ui_client_instance = None
            st.session_state.server_files = []
            st.rerun()

    st.markdown("---")
    st.subheader("Client Log")
    log_container = st.container(height=200)
    with log_container:
        for msg_text in st.session_state.log_messages:
            st.caption(msg_text)

if st.session_state.ui_client_instance is None:
    st.info("Please connect the UI client to the server using the sidebar.")
else:
    col1, col2 = st.columns([2, 3])
    with col1:
        st.subheader("Server Files")
        if st.button("Refresh File List"):
            try:
                st.session_state.server_files = st.session_state.ui_client_instance.request_list_files()
                add_log_to_queue(st.session_state.update_queue,
                                 f"File list: {len(st.session_state.server_files)} files.")
            except (OSError, ProtocolError) as e:
                # The UI session is gone; the user has to reconnect
                st.session_state.ui_client_instance.disconnect(send_quit=False)
                st.session_state.ui_client_instance = None
                st.error(f"List failed: {e}")
                add_log_to_queue(st.session_state.update_queue, f"List error: {e}")

        if not st.session_state.server_files:
            st.info("No files on server or list not refreshed.")
        else:
            selected_files_to_download = st.multiselect(
                "Select files to download:", options=st.session_state.server_files
            )
            if selected_files_to_download and st.button(f"Download Selected ({len(selected_files_to_download)})"):
                active_thread_count = sum(1 for t in st.session_state.active_download_threads.values()
                                          if t.is_alive())
                for filename in selected_files_to_download:
                    thread = st.session_state.active_download_threads.get(filename)
                    if thread is not None and thread.is_alive():
                        add_log_to_queue(st.session_state.update_queue,
                                         f"Skipping {filename}: download already in progress.")
                        continue
                    if active_thread_count >= MAX_CONCURRENT_DOWNLOADS:
                        msg = f"Max concurrent downloads ({MAX_CONCURRENT_DOWNLOADS}) reached. {filename} not started."
                        add_log_to_queue(st.session_state.update_queue, msg)
                        st.warning(msg)
                        continue

                    thread = threading.Thread(
                        target=download_file_worker,
                        args=(st.session_state.server_host, st.session_state.server_port,
                              filename, st.session_state.update_queue),
                        daemon=True,
                    )
                    st.session_state.active_download_threads[filename] = thread
                    thread.start()
                    active_thread_count += 1
                st.rerun()

    with col2:
        st.subheader("Download Progress")
        if not st.session_state.download_status:
            st.caption("No downloads started yet.")
        for filename_key, status in st.session_state.download_status.items():
            st.markdown(f"**{filename_key}**")
            col_prog_bar, col_prog_status = st.columns([1, 2])
            with col_prog_bar:
                st.progress(status.get('progress', 0))
            with col_prog_status:
                message = status.get('message', 'Status unknown')
                if status.get('error'):
                    st.error(message)
                elif status.get('completed'):
                    st.success(message)
                else:
                    st.caption(message)

    st.markdown("---")
    st.subheader("Client Downloads Directory")
    st.info(f"Files are downloaded to: `{DOWNLOADS_DIR}`")
    if os.path.isdir(DOWNLOADS_DIR):
        downloaded_files_list = [f for f in os.listdir(DOWNLOADS_DIR)
                                 if os.path.isfile(os.path.join(DOWNLOADS_DIR, f))]
        for f_name in downloaded_files_list:
            st.caption(f"- {f_name}")
        if not downloaded_files_list:
            st.caption("No files in the download directory yet.")

# Keep polling while workers are running so progress bars move
any_thread_alive = any(t.is_alive() for t in st.session_state.active_download_threads.values())
if processed_updates or any_thread_alive or not st.session_state.update_queue.empty():
    time.sleep(0.1)
    st.rerun()
