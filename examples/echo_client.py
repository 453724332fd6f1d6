import threading
import time

import easyws

done = threading.Event()

handle = (easyws.ConnectionBuilder("wss://echo.websocket.org")
          .with_timeout(5000)
          .with_interval(1000)
          .build())

def on_connect():
    for i in range(3):
        handle.send(f"hello {i}")

def on_message(text):
    print("received:", text)

def on_error(text):
    print("error:", text)

def on_disconnect():
    print("disconnected")
    done.set()

handle.on_connect(on_connect)
handle.on_message(on_message)
handle.on_error(on_error)
handle.on_disconnect(on_disconnect)

handle.connect()
time.sleep(3)
if handle.is_connected():
    handle.disconnect()
done.wait(5)
