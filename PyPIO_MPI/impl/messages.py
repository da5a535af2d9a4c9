""" request opcodes sent from a compute component's root to the I/O pool """

MSG_TAG = 4242
MSG_BUFSIZE = 1 << 20

MSG_CREATE_FILE = 1
MSG_OPEN_FILE = 2
MSG_DEFINE = 3
MSG_INQUIRE = 4
MSG_PUT_VAR = 5
MSG_GET_VAR = 6
MSG_WRITE_DARRAY = 7
MSG_READ_DARRAY = 8
MSG_CLOSE_FILE = 9
MSG_FINALIZE = 10
