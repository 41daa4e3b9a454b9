"""SMP (mcumgr) message encoding, decoding and the firmware upload client."""