from booking_sync.worker import main

main()
