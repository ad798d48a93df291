from memory_palace.application.websocket.ws_server import main

main()
